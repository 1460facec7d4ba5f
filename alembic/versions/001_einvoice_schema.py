"""E-invoice lifecycle schema

Revision ID: 001
Revises: None
Create Date: 2026-10-19

Creates: tenants, customers, providers, einvoice_documents,
         einvoice_line_items, audit_logs, sync_cursors
Enums: documentkind, documentstatus, authoritystatus, deliverystatus,
       deliverymethod, auditaction
"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    # ── 1. Create enum types ──────────────────────────────────────────────
    op.execute("""
        CREATE TYPE documentkind AS ENUM ('INVOICE', 'CREDIT_NOTE', 'DEBIT_NOTE');
    """)
    op.execute("""
        CREATE TYPE documentstatus AS ENUM (
            'DRAFT', 'SUBMITTED', 'ACCEPTED', 'REJECTED', 'CANCELLED'
        );
    """)
    op.execute("""
        CREATE TYPE authoritystatus AS ENUM (
            'VALID', 'DELIVERED', 'ACKNOWLEDGED', 'IN_PROCESS', 'UNDER_QUERY',
            'CONDITIONALLY_ACCEPTED', 'ACCEPTED', 'REJECTED', 'PAID'
        );
    """)
    op.execute("""
        CREATE TYPE deliverystatus AS ENUM ('PENDING', 'DELIVERED', 'FAILED');
    """)
    op.execute("""
        CREATE TYPE deliverymethod AS ENUM ('AUTHORITY_NETWORK', 'EMAIL');
    """)
    op.execute("""
        CREATE TYPE auditaction AS ENUM (
            'SUBMIT_DOCUMENT', 'DELIVER_DOCUMENT', 'SYNC_STATUS',
            'WEBHOOK_RECEIVED', 'TOKEN_REFRESHED', 'TOKEN_REFRESH_FAILED'
        );
    """)

    # ── 2. Parties ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE tenants (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            address TEXT,
            city VARCHAR(100),
            postal_code VARCHAR(20),
            country VARCHAR(100),
            tax_id VARCHAR(50),
            authority_moc_id VARCHAR(50),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("""
        CREATE TABLE customers (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            name VARCHAR(255) NOT NULL,
            business_name VARCHAR(255),
            address TEXT,
            city VARCHAR(100),
            postal_code VARCHAR(20),
            country VARCHAR(100),
            tax_id VARCHAR(50),
            registration_number VARCHAR(50),
            authority_endpoint_id VARCHAR(100),
            email VARCHAR(255),
            phone VARCHAR(50),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX ix_customers_tenant_id ON customers (tenant_id);")

    # ── 3. Authority provider ──────────────────────────────────────────────
    op.execute("""
        CREATE TABLE providers (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            name VARCHAR(255) NOT NULL,
            client_id VARCHAR(255) NOT NULL,
            client_secret VARCHAR(255) NOT NULL,
            endpoint_id VARCHAR(100),
            base_url VARCHAR(255),
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            access_token TEXT,
            refresh_token TEXT,
            token_expires_at TIMESTAMPTZ,
            token_updated_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX ix_providers_active ON providers (is_active) WHERE is_active;")

    # ── 4. Documents ───────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE einvoice_documents (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            tenant_id UUID NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
            customer_id UUID NOT NULL REFERENCES customers(id) ON DELETE RESTRICT,

            kind documentkind NOT NULL,
            document_number VARCHAR(50) NOT NULL,
            type_code VARCHAR(3) NOT NULL,

            -- Credit/debit notes only
            original_invoice_id UUID REFERENCES einvoice_documents(id) ON DELETE SET NULL,
            note TEXT,

            issue_date DATE NOT NULL,
            due_date DATE,

            currency VARCHAR(3) NOT NULL DEFAULT 'USD',
            subtotal NUMERIC(15, 2) NOT NULL DEFAULT 0,
            tax_amount NUMERIC(15, 2) NOT NULL DEFAULT 0,
            total_amount NUMERIC(15, 2) NOT NULL DEFAULT 0,

            status documentstatus NOT NULL DEFAULT 'DRAFT',
            submitted_at TIMESTAMPTZ,
            xml_content TEXT,

            authority_uuid VARCHAR(100) UNIQUE,
            authority_status authoritystatus,
            authority_status_updated_at TIMESTAMPTZ,
            verification_url TEXT,

            delivery_status deliverystatus,
            delivery_method deliverymethod,
            delivered_at TIMESTAMPTZ,
            delivery_error TEXT,

            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),

            CONSTRAINT uq_einvoice_documents_tenant_kind_number
                UNIQUE (tenant_id, kind, document_number)
        );
    """)
    op.execute("CREATE INDEX ix_einvoice_documents_tenant_id ON einvoice_documents (tenant_id);")
    op.execute("CREATE INDEX ix_einvoice_documents_customer_id ON einvoice_documents (customer_id);")
    op.execute("CREATE INDEX ix_einvoice_documents_status ON einvoice_documents (status);")
    op.execute("""
        CREATE INDEX ix_einvoice_documents_authority_status
            ON einvoice_documents (authority_status)
            WHERE authority_uuid IS NOT NULL;
    """)

    op.execute("""
        CREATE TABLE einvoice_line_items (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            document_id UUID NOT NULL REFERENCES einvoice_documents(id) ON DELETE CASCADE,
            position INTEGER NOT NULL DEFAULT 0,
            description TEXT NOT NULL,
            quantity NUMERIC(15, 6) NOT NULL,
            unit_code VARCHAR(20) NOT NULL DEFAULT 'none',
            unit_price NUMERIC(15, 4) NOT NULL,
            tax_rate NUMERIC(6, 4) NOT NULL DEFAULT 0,
            allowance_reason VARCHAR(255),
            allowance_amount NUMERIC(15, 2),
            charge_reason VARCHAR(255),
            charge_amount NUMERIC(15, 2),
            line_total NUMERIC(15, 2) NOT NULL DEFAULT 0,
            tax_amount NUMERIC(15, 2) NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("""
        CREATE INDEX ix_einvoice_line_items_document_id
            ON einvoice_line_items (document_id, position);
    """)

    # ── 5. Audit log and sync cursors ──────────────────────────────────────
    op.execute("""
        CREATE TABLE audit_logs (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            action auditaction NOT NULL,
            entity_type VARCHAR(100) NOT NULL,
            entity_id VARCHAR(100),
            tenant_id UUID,
            description TEXT NOT NULL,
            metadata JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX ix_audit_logs_entity ON audit_logs (entity_type, entity_id);")
    op.execute("CREATE INDEX ix_audit_logs_created_at ON audit_logs (created_at);")

    op.execute("""
        CREATE TABLE sync_cursors (
            name VARCHAR(100) PRIMARY KEY,
            last_synced_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS sync_cursors;")

    op.execute("DROP INDEX IF EXISTS ix_audit_logs_created_at;")
    op.execute("DROP INDEX IF EXISTS ix_audit_logs_entity;")
    op.execute("DROP TABLE IF EXISTS audit_logs;")

    op.execute("DROP INDEX IF EXISTS ix_einvoice_line_items_document_id;")
    op.execute("DROP TABLE IF EXISTS einvoice_line_items;")

    op.execute("DROP INDEX IF EXISTS ix_einvoice_documents_authority_status;")
    op.execute("DROP INDEX IF EXISTS ix_einvoice_documents_status;")
    op.execute("DROP INDEX IF EXISTS ix_einvoice_documents_customer_id;")
    op.execute("DROP INDEX IF EXISTS ix_einvoice_documents_tenant_id;")
    op.execute("DROP TABLE IF EXISTS einvoice_documents;")

    op.execute("DROP INDEX IF EXISTS ix_providers_active;")
    op.execute("DROP TABLE IF EXISTS providers;")

    op.execute("DROP INDEX IF EXISTS ix_customers_tenant_id;")
    op.execute("DROP TABLE IF EXISTS customers;")
    op.execute("DROP TABLE IF EXISTS tenants;")

    op.execute("DROP TYPE IF EXISTS auditaction;")
    op.execute("DROP TYPE IF EXISTS deliverymethod;")
    op.execute("DROP TYPE IF EXISTS deliverystatus;")
    op.execute("DROP TYPE IF EXISTS authoritystatus;")
    op.execute("DROP TYPE IF EXISTS documentstatus;")
    op.execute("DROP TYPE IF EXISTS documentkind;")
