# Supabase table: profiles
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

profiles:
- id: uuid (primary key, equals auth.users.id)
- username: text (unique, not null) - immutable after registration
- name: text (not null) - display name
- avatar_url: text (nullable) - public URL of the avatar object
- created_at: timestamp (default: now())
- updated_at: timestamp (default: now())

Avatar objects live in the "avatars" storage bucket (or S3) under
"<user_id>-<unix_ms>.<ext>". Only image/* uploads up to 5 MiB are accepted.
"""
