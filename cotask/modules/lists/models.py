# Supabase tables: lists, tasks (sharing via list_shares, see sharing/models.py)
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

lists:
- id: uuid (primary key)
- created_by: uuid (foreign key to profiles.id, not null) - the owner, never changes
- title: text (not null)
- description: text (nullable)
- icon: text (not null, default: '📋') - an emoji
- color: text (not null, default: 'indigo') - indigo, emerald, amber, rose, purple, blue
- is_pinned: boolean (default: false)
- is_archived: boolean (default: false)
- created_at: timestamp (default: now())
- updated_at: timestamp

tasks:
- id: uuid (primary key)
- list_id: uuid (foreign key to lists.id, on delete cascade)
- title: text (not null)
- description: text (nullable)
- is_completed: boolean (default: false)
- completed_at: timestamp (nullable) - set together with completed_by
- completed_by: uuid (foreign key to profiles.id, nullable)
- priority: text (default: 'medium') - values: low, medium, high
- due_date: date (nullable)
- created_by: uuid (foreign key to profiles.id)
- created_at: timestamp (default: now())
- updated_at: timestamp

Realtime delete routing requires REPLICA IDENTITY FULL on tasks.
"""

DEFAULT_ICON = "📋"
DEFAULT_COLOR = "indigo"
LIST_COLORS = ("indigo", "emerald", "amber", "rose", "purple", "blue")

TASK_PRIORITIES = ("low", "medium", "high")
DEFAULT_PRIORITY = "medium"
