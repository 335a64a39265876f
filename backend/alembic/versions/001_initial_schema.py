"""初始数据库架构

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# 版本标识符
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 用户表
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("signup_ip", sa.String(45), nullable=True),
        sa.Column("signup_device_id", sa.String(200), nullable=True),
        sa.Column("apple_user_id", sa.String(255), unique=True, nullable=True),
        sa.Column("google_user_id", sa.String(255), unique=True, nullable=True),
        sa.Column("is_email_verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_phone_verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("has_passkey", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_signup_ip", "users", ["signup_ip"])
    op.create_index("ix_users_signup_device_id", "users", ["signup_device_id"])

    # 登录设备表
    op.create_table(
        "auth_devices",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("device_id", sa.String(200), nullable=False),
        sa.Column("last_ip", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_auth_devices_user_id", "auth_devices", ["user_id"])
    op.create_index("ix_auth_devices_device_id", "auth_devices", ["device_id"])

    # 身份验证结果表
    op.create_table(
        "identity_verifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("provider_reference", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Pending"),
        sa.Column("level", sa.String(20), nullable=False, server_default="Basic"),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_identity_verifications_user_id", "identity_verifications", ["user_id"], unique=True)

    # OTP 验证码表
    op.create_table(
        "otp_codes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("otp_hash", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_consumed", sa.Boolean(), nullable=False, server_default="false"),
    )
    op.create_index("ix_otp_codes_email", "otp_codes", ["email"])
    op.create_index("ix_otp_codes_email_created_at", "otp_codes", ["email", "created_at"])

    # OTP 速率窗口表
    op.create_table(
        "otp_rate_limits",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("request_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("window_expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_otp_rate_limits_email", "otp_rate_limits", ["email"], unique=True)

    # 证据表
    op.create_table(
        "evidence",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("state", sa.String(20), nullable=False, server_default="Valid"),
        sa.Column("integrity_score", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("is_fraud_flagged", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_evidence_user_id", "evidence", ["user_id"])

    # 举报表
    op.create_table(
        "reports",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("reported_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reporter_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_reports_reported_user_id", "reports", ["reported_user_id"])

    # 互相验证表
    op.create_table(
        "mutual_verifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_a_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("user_b_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="Pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_mutual_verifications_user_a_id", "mutual_verifications", ["user_a_id"])
    op.create_index("ix_mutual_verifications_user_b_id", "mutual_verifications", ["user_b_id"])

    # 风险信号表
    op.create_table(
        "risk_signals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("severity", sa.Integer(), nullable=False),
        sa.Column("message", sa.String(1000), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("severity BETWEEN 1 AND 10", name="ck_risk_signals_severity"),
    )
    op.create_index("ix_risk_signals_user_id", "risk_signals", ["user_id"])
    op.create_index("ix_risk_signals_created_at", "risk_signals", ["created_at"])
    op.create_index("ix_risk_signals_user_id_is_resolved", "risk_signals", ["user_id", "is_resolved"])

    # TrustScore 快照表
    op.create_table(
        "trust_score_snapshots",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("identity_score", sa.Integer(), nullable=False),
        sa.Column("evidence_score", sa.Integer(), nullable=False),
        sa.Column("behaviour_score", sa.Integer(), nullable=False),
        sa.Column("peer_score", sa.Integer(), nullable=False),
        sa.Column("breakdown_json", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("score BETWEEN 0 AND 1000", name="ck_trust_score_snapshots_score"),
    )
    op.create_index(
        "ix_trust_score_snapshots_user_id_created_at",
        "trust_score_snapshots",
        ["user_id", "created_at"],
    )


def downgrade() -> None:
    op.drop_table("trust_score_snapshots")
    op.drop_table("risk_signals")
    op.drop_table("mutual_verifications")
    op.drop_table("reports")
    op.drop_table("evidence")
    op.drop_table("otp_rate_limits")
    op.drop_table("otp_codes")
    op.drop_table("identity_verifications")
    op.drop_table("auth_devices")
    op.drop_table("users")
