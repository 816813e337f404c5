"""Table definitions for the shared schema and for each tenant namespace"""

from typing import List

from lexdesk.database.statements import substitute_schema

PLATFORM_TABLES: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS public.plans (
        id VARCHAR PRIMARY KEY,
        name VARCHAR NOT NULL,
        max_queries INT DEFAULT NULL,
        additional_query_fee NUMERIC(12, 2) NOT NULL DEFAULT 0,
        max_receivables INT DEFAULT NULL,
        additional_receivable_fee NUMERIC(12, 2) NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.tenants (
        id VARCHAR PRIMARY KEY,
        name VARCHAR NOT NULL,
        schema_name VARCHAR NOT NULL UNIQUE,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        plan_id VARCHAR REFERENCES public.plans(id),
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.users (
        id VARCHAR PRIMARY KEY,
        tenant_id VARCHAR NOT NULL REFERENCES public.tenants(id),
        email VARCHAR NOT NULL,
        name VARCHAR NOT NULL DEFAULT '',
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_tenant_email ON public.users(tenant_id, email)",
    """
    CREATE TABLE IF NOT EXISTS public.subscriptions (
        id VARCHAR PRIMARY KEY,
        tenant_id VARCHAR NOT NULL REFERENCES public.tenants(id),
        status VARCHAR,
        current_period_start TIMESTAMPTZ,
        current_period_end TIMESTAMPTZ,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.system_logs (
        id BIGSERIAL PRIMARY KEY,
        tenant_id VARCHAR NOT NULL,
        level VARCHAR NOT NULL DEFAULT 'info',
        message VARCHAR NOT NULL,
        metadata JSONB DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_system_logs_quota ON public.system_logs(tenant_id, message, created_at)",
    """
    CREATE TABLE IF NOT EXISTS public.tenant_api_configs (
        tenant_id VARCHAR PRIMARY KEY REFERENCES public.tenants(id),
        api_key VARCHAR,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.client_requests (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        search_type VARCHAR NOT NULL,
        search_key VARCHAR NOT NULL,
        status VARCHAR NOT NULL DEFAULT 'pending',
        process_number VARCHAR NULL,
        process_title VARCHAR NULL,
        last_update TIMESTAMPTZ NULL,
        timeline JSONB NOT NULL DEFAULT '[]',
        request_ids JSONB NOT NULL DEFAULT '[]',
        search JSONB NOT NULL DEFAULT '{}',
        metadata JSONB DEFAULT '{}',
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        UNIQUE (search_type, search_key)
    )
    """,
]

TENANT_TABLES: List[str] = [
    "CREATE SCHEMA IF NOT EXISTS {schema}",
    """
    CREATE TABLE IF NOT EXISTS {schema}.trackings (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id VARCHAR NOT NULL,
        tracking_id VARCHAR NOT NULL,
        status VARCHAR NOT NULL DEFAULT 'created',
        recurrence INT DEFAULT 1,
        notification_emails JSONB DEFAULT '[]',
        notification_filters JSONB DEFAULT '{}',
        with_attachments BOOLEAN DEFAULT FALSE,
        plan_config_type VARCHAR,
        fixed_time BOOLEAN DEFAULT FALSE,
        hour_range INT DEFAULT 21,
        search JSONB NOT NULL DEFAULT '{}',
        search_type VARCHAR NOT NULL DEFAULT '',
        search_key VARCHAR NOT NULL DEFAULT '',
        tags JSONB DEFAULT '{}',
        owner_resolution VARCHAR NOT NULL DEFAULT 'owner',
        last_webhook_received_at TIMESTAMPTZ DEFAULT NULL,
        is_active BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_trackings_tracking ON {schema}.trackings(tracking_id)",
    "CREATE INDEX IF NOT EXISTS idx_trackings_user ON {schema}.trackings(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_trackings_search ON {schema}.trackings(search_type, search_key)",
    """
    CREATE TABLE IF NOT EXISTS {schema}.tracking_history (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        tracking_id VARCHAR NOT NULL,
        response_id VARCHAR NOT NULL,
        response_type VARCHAR,
        response_data JSONB NOT NULL DEFAULT '{}',
        is_active BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_history_response ON {schema}.tracking_history(response_id)",
    "CREATE INDEX IF NOT EXISTS idx_history_tracking ON {schema}.tracking_history(tracking_id)",
    """
    CREATE TABLE IF NOT EXISTS {schema}.external_requests (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id VARCHAR NOT NULL,
        request_id VARCHAR NOT NULL,
        search JSONB NOT NULL DEFAULT '{}',
        search_type VARCHAR NOT NULL DEFAULT '',
        search_key VARCHAR NOT NULL DEFAULT '',
        status VARCHAR NOT NULL DEFAULT 'pending',
        result JSONB DEFAULT NULL,
        is_active BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_requests_request ON {schema}.external_requests(request_id)",
    "CREATE INDEX IF NOT EXISTS idx_requests_user ON {schema}.external_requests(user_id)",
    """
    CREATE TABLE IF NOT EXISTS {schema}.notifications (
        id VARCHAR PRIMARY KEY,
        user_id VARCHAR NOT NULL,
        actor_id VARCHAR,
        type VARCHAR NOT NULL,
        title VARCHAR NOT NULL,
        message TEXT NOT NULL,
        payload JSONB,
        link VARCHAR,
        read BOOLEAN NOT NULL DEFAULT FALSE,
        is_active BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON {schema}.notifications(user_id)",
    """
    CREATE TABLE IF NOT EXISTS {schema}.transactions (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        type VARCHAR NOT NULL,
        amount NUMERIC(12, 2) NOT NULL,
        category_id VARCHAR NOT NULL,
        category VARCHAR NOT NULL DEFAULT '',
        description TEXT NOT NULL DEFAULT '',
        date DATE NOT NULL,
        payment_method VARCHAR,
        status VARCHAR NOT NULL DEFAULT 'confirmed',
        tags JSONB DEFAULT '[]',
        notes TEXT,
        created_by VARCHAR NOT NULL,
        is_active BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_transactions_category ON {schema}.transactions(category_id, date)",
    """
    CREATE TABLE IF NOT EXISTS {schema}.publications (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id VARCHAR NOT NULL,
        oab_number VARCHAR NOT NULL DEFAULT '',
        process_number VARCHAR NOT NULL DEFAULT '',
        publication_date DATE NOT NULL,
        content TEXT NOT NULL DEFAULT '',
        source VARCHAR NOT NULL,
        external_id VARCHAR NOT NULL,
        status VARCHAR NOT NULL DEFAULT 'nova',
        metadata JSONB DEFAULT '{}',
        is_active BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_publications_user ON {schema}.publications(user_id)",
    """
    CREATE TABLE IF NOT EXISTS {schema}.invoices (
        id VARCHAR PRIMARY KEY,
        number VARCHAR NOT NULL,
        title VARCHAR NOT NULL,
        description TEXT,
        client_id VARCHAR,
        client_name VARCHAR NOT NULL,
        amount NUMERIC(12, 2) NOT NULL,
        due_date DATE,
        status VARCHAR NOT NULL DEFAULT 'draft',
        created_by VARCHAR NOT NULL,
        is_active BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_invoices_number ON {schema}.invoices(number) WHERE is_active = TRUE",
    """
    CREATE TABLE IF NOT EXISTS {schema}.projects (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        title VARCHAR,
        name VARCHAR NOT NULL,
        client_name VARCHAR NOT NULL,
        status VARCHAR NOT NULL DEFAULT 'active',
        created_by VARCHAR,
        is_active BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
]


def tenant_table_statements(schema: str) -> List[str]:
    return [substitute_schema(sql, schema) for sql in TENANT_TABLES]


async def create_platform_tables(executor):
    """Shared tables in public; run once at startup"""
    for sql in PLATFORM_TABLES:
        await executor.fetch(sql, {})


async def create_tenant_tables(executor, schema: str):
    """Create the namespace and every tenant table inside it"""
    for sql in tenant_table_statements(schema):
        await executor.fetch(sql, {})
