"""
Typed, cache-aware repositories, one per collection, each paired with a JSON
file mirror exposing the same coroutine methods.

- **base_repo.py**: ``BaseRepo``, ``FileRepo`` and the ``storage_operation`` decorator
- **role_mapping_repo.py**: reaction-role messages
- **temporary_role_repo.py**: temporary and supporter roles
- **user_experience_repo.py**: XP, leaderboards, ranks
- **settings_repo.py**: welcome, goodbye and guild settings
- **voice_control_repo.py**: voice disconnect/mute/deafen/move roles
- **poll_repo.py**: polls
- **schedule_repo.py**: one-off and recurring role schedules
- **moderation_log_repo.py**: moderation cases
- **analytics_repo.py**: daily guild counters and command usage
- **core_credits_repo.py**: per-user Core credit balances
"""
