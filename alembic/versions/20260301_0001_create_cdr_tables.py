"""Create the LOAD_AUDIT ledger and the OCC staging and detail tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op as alembic_op  # type: ignore[import-untyped]

revision = "20260301_0001"
down_revision = None
branch_labels = None
depends_on = None

OCC_STAGING_COLUMNS = (
    "DATASOURCE",
    "A_MSISDN",
    "B_MSISDN",
    "ORIG_START_TIME",
    "APN",
    "CALL_TYPE",
    "EVENT_TYPE",
    "CHARGING_ID",
    "SERVICE_ID",
    "SUBSCRIBER_TYPE",
    "ROAMING_TYPE",
    "PARTNER",
    "FILTER_CODE",
    "FLEX_FLD1",
    "FLEX_FLD2",
    "FLEX_FLD3",
    "EVENT_COUNT",
    "DATA_VOLUME",
    "EVENT_DURATION",
    "CHARGE_AMOUNT",
    "DA_AMOUNT_CALC",
    "MA_AMNT_CALC",
    "KEYWORD",
    "CALL_REFERENCE",
    "RECORD_ID",
)

OCC_DETAIL_STRINGS = {
    "DATASOURCE": 20,
    "A_MSISDN": 200,
    "B_MSISDN": 200,
    "APN": 50,
    "CALL_TYPE": 20,
    "EVENT_TYPE": 20,
    "CHARGING_ID": 40,
    "SERVICE_ID": 40,
    "SUBSCRIBER_TYPE": 30,
    "ROAMING_TYPE": 10,
    "PARTNER": 20,
    "FILTER_CODE": 20,
    "FLEX_FLD1": 100,
    "FLEX_FLD2": 100,
    "FLEX_FLD3": 100,
    "KEYWORD": 100,
}

OCC_DETAIL_NUMBERS = (
    "EVENT_COUNT",
    "DATA_VOLUME",
    "EVENT_DURATION",
    "CHARGE_AMOUNT",
    "DA_AMOUNT_CALC",
    "MA_AMNT_CALC",
)


def _technical_columns() -> list[sa.Column]:
    return [
        sa.Column("SOURCE_FILE", sa.String(length=255), nullable=False),
        sa.Column("SOURCE_DIR", sa.String(length=32), nullable=False),
        sa.Column(
            "LOAD_TS",
            sa.DateTime(),
            nullable=False,
            server_default=sa.func.current_timestamp(),
        ),
    ]


def upgrade() -> None:
    """Create the ledger, staging and detail tables with their indexes."""

    alembic_op.create_table(
        "LOAD_AUDIT",
        sa.Column("ID", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("SOURCE_DIR", sa.String(length=32), nullable=False),
        sa.Column("FILE_NAME", sa.String(length=255), nullable=False),
        sa.Column("FILE_SIZE", sa.BigInteger(), nullable=False),
        sa.Column("STATUS", sa.String(length=32), nullable=False),
        sa.Column("ROWS_CSV", sa.Integer(), nullable=True),
        sa.Column("ROWS_DB", sa.Integer(), nullable=True),
        sa.Column("MESSAGE", sa.String(length=4000), nullable=True),
        sa.Column("CREATED_AT", sa.DateTime(timezone=True), nullable=False),
        sa.Column("LOAD_TS", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("SOURCE_DIR", "FILE_NAME", "FILE_SIZE", name="UQ_LOAD_AUDIT_FILE"),
    )
    alembic_op.create_index("ix_LOAD_AUDIT_STATUS", "LOAD_AUDIT", ["STATUS"])

    alembic_op.create_table(
        "RA_T_TMP_OCC",
        *(sa.Column(name, sa.String(length=4000), nullable=True) for name in OCC_STAGING_COLUMNS),
        *_technical_columns(),
    )
    alembic_op.create_index("ix_RA_T_TMP_OCC_SOURCE_FILE", "RA_T_TMP_OCC", ["SOURCE_FILE"])

    alembic_op.create_table(
        "RA_T_OCC_CDR_DETAIL",
        sa.Column("ID", sa.Integer(), primary_key=True, autoincrement=True),
        *(
            sa.Column(name, sa.String(length=length), nullable=True)
            for name, length in OCC_DETAIL_STRINGS.items()
        ),
        *(sa.Column(name, sa.Numeric(38, 10), nullable=True) for name in OCC_DETAIL_NUMBERS),
        sa.Column("START_DATE", sa.DateTime(), nullable=True),
        sa.Column("START_HOUR", sa.Integer(), nullable=True),
        sa.Column("ORIG_START_TIME", sa.String(length=64), nullable=True),
        sa.Column("DEDUP_KEY", sa.String(length=255), nullable=False),
        *_technical_columns(),
        sa.UniqueConstraint("DEDUP_KEY", name="UQ_RA_T_OCC_CDR_DETAIL_DEDUP"),
    )
    alembic_op.create_index(
        "ix_RA_T_OCC_CDR_DETAIL_SOURCE_FILE", "RA_T_OCC_CDR_DETAIL", ["SOURCE_FILE"]
    )


def downgrade() -> None:
    """Drop the detail, staging and ledger tables."""

    alembic_op.drop_index("ix_RA_T_OCC_CDR_DETAIL_SOURCE_FILE", table_name="RA_T_OCC_CDR_DETAIL")
    alembic_op.drop_table("RA_T_OCC_CDR_DETAIL")
    alembic_op.drop_index("ix_RA_T_TMP_OCC_SOURCE_FILE", table_name="RA_T_TMP_OCC")
    alembic_op.drop_table("RA_T_TMP_OCC")
    alembic_op.drop_index("ix_LOAD_AUDIT_STATUS", table_name="LOAD_AUDIT")
    alembic_op.drop_table("LOAD_AUDIT")
