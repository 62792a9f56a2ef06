# Supabase table: notes (sharing via note_shares, see sharing/models.py)
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

notes:
- id: uuid (primary key)
- created_by: uuid (foreign key to profiles.id, not null) - the owner, never changes
- title: text (not null)
- content: text (nullable) - plain text body
- is_pinned: boolean (default: false)
- is_archived: boolean (default: false)
- created_at: timestamp (default: now())
- updated_at: timestamp
"""
