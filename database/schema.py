SCHEMA = """
CREATE TABLE IF NOT EXISTS clinics (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    clinic_name TEXT NOT NULL,
    clinic_code TEXT UNIQUE NOT NULL,
    region_code TEXT,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'inactive', 'suspended')),
    created_at TIMESTAMPTZ DEFAULT now(),
    updated_at TIMESTAMPTZ DEFAULT now()
);

CREATE TABLE IF NOT EXISTS card_batches (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    batch_number TEXT UNIQUE NOT NULL,
    total_cards INTEGER NOT NULL CHECK (total_cards > 0),
    cards_generated INTEGER NOT NULL DEFAULT 0,
    batch_status TEXT NOT NULL DEFAULT 'generating'
        CHECK (batch_status IN ('generating', 'completed', 'partial')),
    generation_method TEXT NOT NULL DEFAULT 'auto' CHECK (generation_method IN ('auto', 'manual', 'range')),
    batch_metadata JSONB NOT NULL DEFAULT '{}',
    created_by TEXT,
    notes TEXT,
    created_at TIMESTAMPTZ DEFAULT now(),
    updated_at TIMESTAMPTZ DEFAULT now()
);

CREATE TABLE IF NOT EXISTS cards (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    batch_id UUID REFERENCES card_batches(id) ON DELETE RESTRICT,
    batch_position INTEGER,
    card_number INTEGER UNIQUE NOT NULL CHECK (card_number >= 1),
    control_number TEXT UNIQUE NOT NULL,
    control_number_v2 TEXT UNIQUE NOT NULL,
    unified_control_number TEXT UNIQUE,
    printed_control_number TEXT UNIQUE,
    passcode TEXT NOT NULL,
    location_code TEXT,
    clinic_code TEXT,
    status TEXT NOT NULL DEFAULT 'unassigned'
        -- legacy labels (unactivated, location_pending, active, inactive, deactivated)
        -- remain readable on rows written by earlier portal versions
        CHECK (status IN ('unassigned', 'assigned', 'activated', 'suspended',
                          'unactivated', 'location_pending', 'active', 'inactive', 'deactivated')),
    assigned_clinic_id UUID REFERENCES clinics(id),
    assigned_at TIMESTAMPTZ,
    activated_at TIMESTAMPTZ,
    expires_at TIMESTAMPTZ,
    generation_method TEXT NOT NULL DEFAULT 'auto',
    migration_version INTEGER NOT NULL DEFAULT 3,
    created_at TIMESTAMPTZ DEFAULT now(),
    updated_at TIMESTAMPTZ DEFAULT now(),
    UNIQUE (batch_id, batch_position),
    CHECK (status NOT IN ('activated', 'suspended', 'active', 'inactive', 'deactivated') OR assigned_clinic_id IS NOT NULL)
);

CREATE INDEX IF NOT EXISTS idx_cards_status ON cards(status);
CREATE INDEX IF NOT EXISTS idx_cards_clinic ON cards(assigned_clinic_id);
CREATE INDEX IF NOT EXISTS idx_cards_batch ON cards(batch_id);

CREATE TABLE IF NOT EXISTS perk_templates (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    perk_type TEXT UNIQUE NOT NULL,
    description TEXT,
    category TEXT,
    default_value NUMERIC(10, 2) NOT NULL DEFAULT 0 CHECK (default_value >= 0),
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    is_default BOOLEAN NOT NULL DEFAULT FALSE,
    is_system_default BOOLEAN NOT NULL DEFAULT FALSE,
    created_by TEXT,
    created_at TIMESTAMPTZ DEFAULT now(),
    updated_at TIMESTAMPTZ DEFAULT now()
);

CREATE TABLE IF NOT EXISTS clinic_perk_customizations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    clinic_id UUID NOT NULL REFERENCES clinics(id) ON DELETE CASCADE,
    perk_template_id UUID NOT NULL REFERENCES perk_templates(id) ON DELETE CASCADE,
    custom_name TEXT,
    custom_description TEXT,
    custom_value NUMERIC(10, 2),
    is_enabled BOOLEAN NOT NULL DEFAULT TRUE,
    requires_appointment BOOLEAN NOT NULL DEFAULT FALSE,
    max_redemptions_per_card INTEGER NOT NULL DEFAULT 1 CHECK (max_redemptions_per_card >= 1),
    valid_from TIMESTAMPTZ,
    valid_until TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT now(),
    updated_at TIMESTAMPTZ DEFAULT now(),
    UNIQUE (clinic_id, perk_template_id)
);

CREATE TABLE IF NOT EXISTS card_perks (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    card_id UUID NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    perk_template_id UUID REFERENCES perk_templates(id) ON DELETE SET NULL,
    perk_type TEXT NOT NULL,
    perk_value NUMERIC(10, 2) NOT NULL DEFAULT 0,
    claimed BOOLEAN NOT NULL DEFAULT FALSE,
    claimed_at TIMESTAMPTZ,
    claimed_by_clinic_id UUID REFERENCES clinics(id),
    expires_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ DEFAULT now(),
    UNIQUE (card_id, perk_type)
);

CREATE TABLE IF NOT EXISTS assignment_history (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    card_id UUID NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    card_number INTEGER,
    action TEXT NOT NULL,
    previous_clinic_id UUID,
    clinic_id UUID,
    performed_by TEXT NOT NULL,
    performed_by_type TEXT NOT NULL,
    details JSONB NOT NULL DEFAULT '{}',
    created_at TIMESTAMPTZ DEFAULT now()
);

CREATE TABLE IF NOT EXISTS card_code_history (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    card_id UUID NOT NULL REFERENCES cards(id) ON DELETE CASCADE,
    change_type TEXT NOT NULL,
    field_name TEXT,
    old_value JSONB,
    new_value JSONB,
    changed_by TEXT NOT NULL,
    changed_by_type TEXT NOT NULL,
    created_at TIMESTAMPTZ DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_assignment_history_card ON assignment_history(card_id);
CREATE INDEX IF NOT EXISTS idx_code_history_card ON card_code_history(card_id);

CREATE TABLE IF NOT EXISTS system_versions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    component TEXT UNIQUE NOT NULL,
    version_number BIGINT NOT NULL DEFAULT 0 CHECK (version_number >= 0),
    change_description TEXT,
    updated_at TIMESTAMPTZ DEFAULT now()
);

CREATE TABLE IF NOT EXISTS user_session_state (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    user_id TEXT NOT NULL,
    user_type TEXT NOT NULL DEFAULT 'admin',
    component_name TEXT NOT NULL,
    form_data JSONB NOT NULL DEFAULT '{}',
    metadata JSONB NOT NULL DEFAULT '{}',
    last_saved TIMESTAMPTZ NOT NULL DEFAULT now(),
    expires_at TIMESTAMPTZ NOT NULL,
    UNIQUE (user_id, component_name)
);

CREATE INDEX IF NOT EXISTS idx_session_state_expiry ON user_session_state(expires_at);
"""
