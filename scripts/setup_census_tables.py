"""
setup_census_tables.py
======================
Script to create the census tables in Supabase and seed them from a local cache.

Usage:
    python scripts/setup_census_tables.py --schema-only
    python scripts/setup_census_tables.py --upload-cache local_data/census_cache.db --hospital-id hanga_roa

Run without arguments to print the SQL schema.
"""

import argparse
from pathlib import Path

# Add parent directory to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))


def get_supabase_client():
    """Get Supabase client from secrets."""
    try:
        from supabase import create_client

        # Load secrets from .streamlit/secrets.toml
        import toml
        secrets_path = Path(__file__).parent.parent / ".streamlit" / "secrets.toml"

        if not secrets_path.exists():
            print("ERROR: .streamlit/secrets.toml not found!")
            print("Please configure your Supabase credentials first.")
            return None

        secrets = toml.load(secrets_path)

        url = secrets["supabase"]["url"]
        key = secrets["supabase"]["key"]

        return create_client(url, key)

    except ImportError as e:
        print(f"ERROR: Missing dependency - {e}")
        print("Run: pip install supabase toml")
        return None
    except Exception as e:
        print(f"ERROR: Failed to create Supabase client - {e}")
        return None


def print_sql_schema():
    """Print SQL schema for the census tables and the patch function."""
    sql = """
-- ============================================================================
-- CENSUS TABLES FOR SUPABASE
-- ============================================================================
-- Run this SQL in your Supabase SQL Editor

-- One JSON document per hospital and census date
CREATE TABLE IF NOT EXISTS daily_records (
    hospital_id TEXT NOT NULL DEFAULT 'default',
    date DATE NOT NULL,
    data JSONB NOT NULL,
    last_updated TEXT,
    writer_id TEXT,
    write_id TEXT,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT TIMEZONE('utc', NOW()),

    PRIMARY KEY (hospital_id, date)
);

-- Append-only audit archive
CREATE TABLE IF NOT EXISTS audit_logs (
    id TEXT PRIMARY KEY,
    hospital_id TEXT NOT NULL DEFAULT 'default',
    timestamp TIMESTAMP WITH TIME ZONE NOT NULL,
    user_id TEXT,
    action TEXT NOT NULL,
    entity_type TEXT,
    entity_id TEXT,
    record_date DATE,
    data JSONB NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_logs_record_date ON audit_logs(hospital_id, record_date);

-- ============================================================================
-- FIELD-PATH PATCHES
-- ============================================================================
-- Sets one path inside a JSON document, creating (or replacing non-object)
-- intermediate maps on the way down.
CREATE OR REPLACE FUNCTION census_deep_set(doc JSONB, path TEXT[], value JSONB)
RETURNS JSONB
LANGUAGE plpgsql IMMUTABLE AS $$
DECLARE
    head TEXT := path[1];
BEGIN
    IF doc IS NULL OR jsonb_typeof(doc) <> 'object' THEN
        doc := '{}'::JSONB;
    END IF;
    IF array_length(path, 1) = 1 THEN
        RETURN doc || jsonb_build_object(head, value);
    END IF;
    RETURN doc || jsonb_build_object(head, census_deep_set(doc -> head, path[2:], value));
END;
$$;

-- Applies [{"path": [...], "value": ...}, ...] to one record in a single
-- statement. Returns false when the record does not exist.
CREATE OR REPLACE FUNCTION apply_record_patch(
    p_hospital_id TEXT,
    p_date DATE,
    p_updates JSONB,
    p_writer_id TEXT,
    p_write_id TEXT
)
RETURNS BOOLEAN
LANGUAGE plpgsql AS $$
DECLARE
    doc JSONB;
    item JSONB;
    item_path TEXT[];
BEGIN
    SELECT data INTO doc FROM daily_records
    WHERE hospital_id = p_hospital_id AND date = p_date
    FOR UPDATE;

    IF NOT FOUND THEN
        RETURN FALSE;
    END IF;

    FOR item IN SELECT * FROM jsonb_array_elements(p_updates) LOOP
        SELECT array_agg(elem ORDER BY idx) INTO item_path
        FROM jsonb_array_elements_text(item -> 'path') WITH ORDINALITY AS t(elem, idx);
        doc := census_deep_set(doc, item_path, item -> 'value');
    END LOOP;

    UPDATE daily_records
    SET data = doc,
        last_updated = doc ->> 'lastUpdated',
        writer_id = p_writer_id,
        write_id = p_write_id,
        updated_at = TIMEZONE('utc', NOW())
    WHERE hospital_id = p_hospital_id AND date = p_date;

    RETURN TRUE;
END;
$$;

-- ============================================================================
-- REALTIME
-- ============================================================================
-- Full old row on DELETE so subscribers can match the date
ALTER TABLE daily_records REPLICA IDENTITY FULL;
ALTER PUBLICATION supabase_realtime ADD TABLE daily_records;

-- Enable Row Level Security
ALTER TABLE daily_records ENABLE ROW LEVEL SECURITY;
ALTER TABLE audit_logs ENABLE ROW LEVEL SECURITY;

CREATE POLICY "Allow authenticated census access" ON daily_records
    FOR ALL USING (auth.role() = 'authenticated');

CREATE POLICY "Allow authenticated audit insert" ON audit_logs
    FOR INSERT WITH CHECK (auth.role() = 'authenticated');

CREATE POLICY "Allow authenticated audit read" ON audit_logs
    FOR SELECT USING (auth.role() = 'authenticated');

GRANT ALL ON daily_records TO authenticated;
GRANT SELECT, INSERT ON audit_logs TO authenticated;
GRANT EXECUTE ON FUNCTION apply_record_patch(TEXT, DATE, JSONB, TEXT, TEXT) TO authenticated;
"""
    print(sql)
    return sql


def upload_cache_to_supabase(cache_path: str, hospital_id: str):
    """
    Upload every record in a local census cache to the daily_records table.

    Args:
        cache_path: Path to the SQLite cache written by the app
        hospital_id: Hospital the records belong to
    """
    from census_core.offline.local_cache import LocalCache

    cache = LocalCache(Path(cache_path)).initialize()
    dates = cache.get_all_dates()
    print(f"Loaded {len(dates)} records from {cache_path}")

    client = get_supabase_client()
    if client is None:
        return False

    rows = []
    for date in dates:
        record = cache.get_record(date)
        rows.append({
            "hospital_id": hospital_id,
            "date": date,
            "data": record,
            "last_updated": record.get("lastUpdated"),
            "writer_id": "seed-script",
        })
    cache.close()

    print(f"Uploading {len(rows)} records to Supabase...")

    try:
        # Upsert so re-running the seed is harmless
        client.table("daily_records").upsert(rows).execute()
        print(f"SUCCESS: Uploaded {len(rows)} records to daily_records table")
        return True
    except Exception as e:
        print(f"ERROR: Failed to upload data - {e}")
        return False


def main():
    parser = argparse.ArgumentParser(
        description="Setup census tables in Supabase"
    )
    parser.add_argument(
        "--upload-cache",
        type=str,
        help="Path to a local census cache (SQLite) to upload"
    )
    parser.add_argument(
        "--hospital-id",
        type=str,
        default="default",
        help="Hospital id for uploaded records"
    )
    parser.add_argument(
        "--schema-only",
        action="store_true",
        help="Only print SQL schema, don't upload data"
    )

    args = parser.parse_args()

    print("=" * 70)
    print("CENSUS TABLE SETUP FOR SUPABASE")
    print("=" * 70)

    if args.schema_only or not args.upload_cache:
        print("\nSQL Schema (copy and run in Supabase SQL Editor):\n")
        print_sql_schema()

        if not args.upload_cache:
            print("\n" + "=" * 70)
            print("To upload cached records, run:")
            print("  python scripts/setup_census_tables.py --upload-cache local_data/census_cache.db")
            print("=" * 70)

    if args.upload_cache and not args.schema_only:
        print(f"\nUploading records from: {args.upload_cache}")
        upload_cache_to_supabase(args.upload_cache, args.hospital_id)

    print("\nDone!")


if __name__ == "__main__":
    main()
