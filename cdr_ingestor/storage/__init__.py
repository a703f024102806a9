"""Remote transports and the local durable file store."""
from .local_store import LocalFileStore, err_path, inbound_path, out_path, tmp_path
from .transport import FtpTransport, LocalDirectoryTransport, RemoteTransport

__all__ = [
    "FtpTransport",
    "LocalDirectoryTransport",
    "LocalFileStore",
    "RemoteTransport",
    "err_path",
    "inbound_path",
    "out_path",
    "tmp_path",
]
