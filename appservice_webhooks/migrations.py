from mautrix.util.async_db import UpgradeTable, Scheme, Connection

upgrade_table = UpgradeTable()

@upgrade_table.register(description="Initial webhooks table")
async def upgrade_v1(conn: Connection, scheme: Scheme) -> None:
    await conn.execute("""
        CREATE TABLE webhooks (
            id TEXT PRIMARY KEY NOT NULL,
            room_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            label TEXT
        )
    """)

@upgrade_table.register(description="Index on room_id")
async def upgrade_v2(conn: Connection, scheme: Scheme) -> None:
    await conn.execute("CREATE INDEX IF NOT EXISTS idx_webhooks_room_id ON webhooks (room_id)")
