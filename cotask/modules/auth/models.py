# Supabase Auth
# Accounts live in Supabase's auth.users table; Cotask keeps one public
# profile row per account (see profiles/models.py).

"""
Supabase Auth provides:
- auth.sign_up() - Register new users
- auth.sign_in_with_password() - Authenticate users
- auth.get_user() - Get current user from JWT token
- auth.sign_out() - Logout users
- auth.admin.update_user_by_id() / delete_user() - service role only

At registration the backend creates the matching profiles row with the same
id, carrying the chosen username (unique, immutable) and display name.
"""
