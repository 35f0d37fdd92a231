from study_helper.db.database import get_db

GENERATION_ACTIONS = ("generate_quiz", "generate_blueprint")


async def ensure_user(user_id: int, username: str | None = None, first_name: str | None = None):
    """Create or update a user record."""
    db = await get_db()
    await db.execute(
        """INSERT INTO users (user_id, username, first_name)
           VALUES (?, ?, ?)
           ON CONFLICT(user_id) DO UPDATE SET
               username = excluded.username,
               first_name = excluded.first_name,
               last_active = datetime('now')""",
        (user_id, username, first_name),
    )
    await db.commit()


# ============================================================================
# USAGE LOG
# ============================================================================

async def log_usage(user_id: int, action_type: str) -> None:
    """Record one generation action."""
    db = await get_db()
    await db.execute(
        "INSERT INTO usage_logs (user_id, action_type) VALUES (?, ?)",
        (user_id, action_type),
    )
    await db.commit()


async def count_usage_today(user_id: int, actions: tuple[str, ...] = GENERATION_ACTIONS) -> int:
    """Count generation actions of a user since midnight UTC."""
    db = await get_db()
    placeholders = ", ".join("?" for _ in actions)
    cursor = await db.execute(
        f"""SELECT COUNT(*) AS cnt
            FROM usage_logs
            WHERE user_id = ?
              AND action_type IN ({placeholders})
              AND created_at >= datetime('now', 'start of day')""",
        (user_id, *actions),
    )
    row = await cursor.fetchone()
    return row["cnt"] if row else 0


# ============================================================================
# SUBSCRIPTIONS
# ============================================================================

async def get_subscription(user_id: int) -> dict | None:
    db = await get_db()
    cursor = await db.execute(
        """SELECT user_id, status, plan_id, current_period_end, updated_at
           FROM subscriptions WHERE user_id = ?""",
        (user_id,),
    )
    row = await cursor.fetchone()
    return dict(row) if row else None


async def upsert_subscription(
    user_id: int,
    status: str,
    plan_id: str,
    current_period_end: str | None,
) -> None:
    """Create or replace the subscription of a user."""
    db = await get_db()
    await db.execute(
        """INSERT INTO subscriptions (user_id, status, plan_id, current_period_end)
           VALUES (?, ?, ?, ?)
           ON CONFLICT(user_id) DO UPDATE SET
               status = excluded.status,
               plan_id = excluded.plan_id,
               current_period_end = excluded.current_period_end,
               updated_at = datetime('now')""",
        (user_id, status, plan_id, current_period_end),
    )
    await db.commit()


async def cancel_subscription(user_id: int) -> bool:
    """Mark a subscription cancelled. Returns True if the user had one."""
    db = await get_db()
    cursor = await db.execute(
        "UPDATE subscriptions SET status = 'cancelled', updated_at = datetime('now') WHERE user_id = ?",
        (user_id,),
    )
    await db.commit()
    return cursor.rowcount > 0


# ============================================================================
# PER-USER KEY/VALUE STORAGE
# ============================================================================

async def get_user_value(user_id: int, key: str) -> str | None:
    db = await get_db()
    cursor = await db.execute(
        "SELECT value FROM user_storage WHERE user_id = ? AND key = ?",
        (user_id, key),
    )
    row = await cursor.fetchone()
    return row["value"] if row else None


async def set_user_value(user_id: int, key: str, value: str) -> None:
    """Store a value, replacing any previous one (last write wins)."""
    db = await get_db()
    await db.execute(
        """INSERT INTO user_storage (user_id, key, value)
           VALUES (?, ?, ?)
           ON CONFLICT(user_id, key) DO UPDATE SET
               value = excluded.value,
               updated_at = datetime('now')""",
        (user_id, key, value),
    )
    await db.commit()
