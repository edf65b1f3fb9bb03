#   Copyright 2026 UCP Authors
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.

"""Utility script to dump the handshake audit log from the checkout database.

Each magic-link handshake transition is printed with its timestamp, the states
involved, whether a token and a user were present, and the error code. The
stored checkout sessions can optionally be listed as well.

Usage:
  uv run dump_audit_log.py --checkout_db_path=... [--handshake_id=...]
      [--show_sessions]
"""

import asyncio
import sys
from absl import app as absl_app
from absl import flags
import config
import db
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker

FLAGS = config.FLAGS
flags.DEFINE_string("handshake_id", None, "Only show this handshake")
flags.DEFINE_bool("show_sessions", False, "Also list stored checkout sessions")


async def dump_audit_log():
  """Queries the database and prints the audit log."""
  if not FLAGS.checkout_db_path:
    print("Error: --checkout_db_path is required.")
    sys.exit(1)

  db_url = f"sqlite+aiosqlite:///{FLAGS.checkout_db_path}"
  engine = create_async_engine(db_url, echo=False)
  session_factory = sessionmaker(
      engine, expire_on_commit=False, class_=AsyncSession
  )

  try:
    async with session_factory() as session:
      print("=== HANDSHAKE AUDIT LOG ===")
      entries = await db.get_handshake_log(session, FLAGS.handshake_id)
      if not entries:
        print("No handshake transitions found.")
      for entry in entries:
        print(
            f"[{entry.timestamp}] {entry.handshake_id} (device"
            f" {entry.device_id}): {entry.from_state} -> {entry.to_state}"
        )
        print(f"  Token: {entry.has_token}  User: {entry.has_user}")
        if entry.error_code:
          print(f"  Error: {entry.error_code}")
        print("-" * 40)

      if FLAGS.show_sessions:
        print("=== CHECKOUT SESSIONS ===")
        for record in await db.list_checkout_sessions(session):
          print(
              f"{record.session_id} store={record.store_id}"
              f" device={record.device_id} step={record.current_step}"
              f" expires={record.expires_at}"
          )
  finally:
    await engine.dispose()


def main(argv):
  """Main entry point for the audit log dump script."""
  del argv
  asyncio.run(dump_audit_log())


if __name__ == "__main__":
  absl_app.run(main)
