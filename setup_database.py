#!/usr/bin/env python3
"""
Setup Supabase Database Tables for the Impa AI console
Creates the tables the backend reads and writes through the data gateway.

Requires an `exec_sql(sql text)` function in the project (SQL editor, once).
"""

import os
import sys
from pathlib import Path
from dotenv import load_dotenv
from supabase import create_client, Client

ROOT_DIR = Path(__file__).parent / 'backend'
load_dotenv(ROOT_DIR / '.env')

supabase_url = os.environ.get('SUPABASE_URL')
supabase_key = os.environ.get('SUPABASE_SERVICE_KEY')

TABLES = [
    'user_profiles', 'user_settings', 'whatsapp_connections', 'ai_agents',
    'integrations', 'api_keys', 'system_settings', 'themes',
]

SQL_COMMANDS = [
    # Accounts
    """
    CREATE TABLE IF NOT EXISTS user_profiles (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        email VARCHAR(255) UNIQUE NOT NULL,
        full_name VARCHAR(255),
        password_hash VARCHAR(255),
        password VARCHAR(255),
        role VARCHAR(20) DEFAULT 'user',
        status VARCHAR(20) DEFAULT 'active',
        phone VARCHAR(50),
        avatar_url TEXT,
        api_key VARCHAR(100),
        login_count INTEGER DEFAULT 0,
        last_login_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    );
    CREATE INDEX IF NOT EXISTS idx_user_profiles_email ON user_profiles(email);
    """,

    # Per-user limits and feature toggles
    """
    CREATE TABLE IF NOT EXISTS user_settings (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID UNIQUE REFERENCES user_profiles(id) ON DELETE CASCADE NOT NULL,
        agents_limit INTEGER,
        whatsapp_connections_limit INTEGER,
        transcribe_audio_enabled BOOLEAN DEFAULT TRUE,
        understand_images_enabled BOOLEAN DEFAULT TRUE,
        voice_response_enabled BOOLEAN DEFAULT TRUE,
        calendar_integration_enabled BOOLEAN DEFAULT TRUE,
        vector_store_enabled BOOLEAN DEFAULT TRUE
    );
    """,

    # WhatsApp connections (one Evolution API instance each)
    """
    CREATE TABLE IF NOT EXISTS whatsapp_connections (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID REFERENCES user_profiles(id) ON DELETE CASCADE NOT NULL,
        connection_name VARCHAR(255) NOT NULL,
        instance_name VARCHAR(255) UNIQUE NOT NULL,
        instance_id VARCHAR(255),
        instance_token VARCHAR(100) UNIQUE,
        status VARCHAR(20) DEFAULT 'disconnected'
            CHECK (status IN ('connected', 'connecting', 'disconnected', 'error')),
        settings JSONB,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    );
    CREATE INDEX IF NOT EXISTS idx_whatsapp_connections_user_id ON whatsapp_connections(user_id);
    """,

    # Agents
    """
    CREATE TABLE IF NOT EXISTS ai_agents (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID REFERENCES user_profiles(id) ON DELETE CASCADE NOT NULL,
        whatsapp_connection_id UUID REFERENCES whatsapp_connections(id) ON DELETE SET NULL,
        name VARCHAR(255) NOT NULL,
        description TEXT,
        status VARCHAR(20) DEFAULT 'active',
        is_default BOOLEAN DEFAULT FALSE,
        evolution_bot_id VARCHAR(100),
        model VARCHAR(100),
        temperature NUMERIC(3, 2),
        system_prompt TEXT,
        tone VARCHAR(50),
        main_function VARCHAR(100),
        model_config JSONB DEFAULT '{}',
        voice_response_enabled BOOLEAN DEFAULT FALSE,
        transcribe_audio BOOLEAN DEFAULT FALSE,
        understand_images BOOLEAN DEFAULT FALSE,
        calendar_integration BOOLEAN DEFAULT FALSE,
        vector_store_enabled BOOLEAN DEFAULT FALSE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    );
    CREATE INDEX IF NOT EXISTS idx_ai_agents_user_id ON ai_agents(user_id);
    CREATE INDEX IF NOT EXISTS idx_ai_agents_connection ON ai_agents(whatsapp_connection_id);
    """,

    # Operator-managed integrations (evolution_api, n8n)
    """
    CREATE TABLE IF NOT EXISTS integrations (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name VARCHAR(255) NOT NULL,
        type VARCHAR(50) UNIQUE NOT NULL,
        config JSONB DEFAULT '{}',
        is_active BOOLEAN DEFAULT TRUE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    );
    """,

    # API keys
    """
    CREATE TABLE IF NOT EXISTS api_keys (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID REFERENCES user_profiles(id) ON DELETE CASCADE NOT NULL,
        api_key VARCHAR(100) UNIQUE NOT NULL,
        name VARCHAR(255),
        description TEXT,
        permissions JSONB DEFAULT '["read"]',
        rate_limit INTEGER DEFAULT 100,
        is_active BOOLEAN DEFAULT TRUE,
        is_admin_key BOOLEAN DEFAULT FALSE,
        access_scope VARCHAR(20) DEFAULT 'user',
        last_used_at TIMESTAMPTZ,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    );
    CREATE INDEX IF NOT EXISTS idx_api_keys_user_id ON api_keys(user_id);
    """,

    # System settings and branding
    """
    CREATE TABLE IF NOT EXISTS system_settings (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        setting_key VARCHAR(100) UNIQUE NOT NULL,
        setting_value JSONB,
        updated_at TIMESTAMPTZ DEFAULT NOW()
    );
    INSERT INTO system_settings (setting_key, setting_value) VALUES
        ('default_agents_limit', '5'),
        ('default_whatsapp_connections_limit', '1'),
        ('allow_public_registration', 'true')
    ON CONFLICT (setting_key) DO NOTHING;
    """,
    """
    CREATE TABLE IF NOT EXISTS themes (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name VARCHAR(100) NOT NULL,
        display_name VARCHAR(255),
        description TEXT,
        colors JSONB DEFAULT '{}',
        fonts JSONB DEFAULT '{}',
        borders JSONB DEFAULT '{}',
        custom_css TEXT,
        logo_icon VARCHAR(20),
        is_default BOOLEAN DEFAULT FALSE,
        is_active BOOLEAN DEFAULT FALSE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    );
    """,
]


def create_tables(supabase: Client) -> bool:
    """Run every CREATE statement through exec_sql"""
    print("🚀 Setting up Impa AI database tables...")

    for i, sql in enumerate(SQL_COMMANDS, 1):
        try:
            print(f"   Executing SQL command {i}/{len(SQL_COMMANDS)}...")
            supabase.rpc('exec_sql', {'sql': sql}).execute()
            print(f"   ✅ Command {i} executed successfully")
        except Exception as e:
            print(f"   ❌ Error executing command {i}: {str(e)}")
            return False

    print("✅ Database setup completed successfully!")
    return True


def verify_tables(supabase: Client) -> bool:
    """Verify that all tables were created"""
    print("\n🔍 Verifying table creation...")

    for table in TABLES:
        try:
            supabase.table(table).select('*').limit(1).execute()
            print(f"   ✅ Table '{table}' exists and is accessible")
        except Exception as e:
            print(f"   ❌ Table '{table}' error: {str(e)}")
            return False

    print("✅ All tables verified successfully!")
    return True


if __name__ == "__main__":
    print("Impa AI Database Setup")
    print("=" * 50)

    if not supabase_url or not supabase_key:
        print("❌ Missing Supabase credentials in environment variables")
        sys.exit(1)

    print(f"Supabase URL: {supabase_url}")
    print(f"Service Key: {'*' * 20}...{supabase_key[-10:]}")

    client = create_client(supabase_url, supabase_key)
    if not create_tables(client) or not verify_tables(client):
        print("\n❌ Database setup failed")
        sys.exit(1)

    print("\n🎉 Database setup completed successfully!")
