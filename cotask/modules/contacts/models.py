# Supabase table: user_relationships
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

user_relationships:
- id: uuid (primary key)
- user_id: uuid (foreign key to profiles.id, not null) - the side that sent the request
- related_user_id: uuid (foreign key to profiles.id, not null) - the side that received it
- relationship_type: text (not null, default: 'pending') - values: pending, friend, blocked
- created_at: timestamp (default: now())

At most one row exists per unordered pair {user_id, related_user_id}.
Lifecycle: none -> pending (request) -> friend (accepted by related_user_id);
pending -> none (reject, either side); friend -> none (remove, either side).
'blocked' is reserved; readers report any other status as blocked.
"""

PENDING = "pending"
FRIEND = "friend"
BLOCKED = "blocked"

# Statuses as seen by one side of the pair
PENDING_SENT = "pending-sent"
PENDING_RECEIVED = "pending-received"
