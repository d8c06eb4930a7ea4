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

"""Shared configuration and startup logic for the shop orders server."""

import contextlib
import os
from absl import flags
import db
from fastapi import FastAPI

FLAGS = flags.FLAGS

DEFAULT_PLATFORM_FEE_PERCENTAGE = 5.0

# Define flags only if they haven't been defined yet (to avoid duplicates
# during tests or re-imports)
try:
  flags.DEFINE_string("database_path", None, "Path to the shop database")
  flags.DEFINE_integer("port", None, "Port to run the server on")
  flags.DEFINE_string(
      "stripe_secret_key",
      os.environ.get("STRIPE_SECRET_KEY", ""),
      "Stripe platform secret API key",
  )
  flags.DEFINE_string(
      "stripe_webhook_secret",
      os.environ.get("STRIPE_WEBHOOK_SECRET", ""),
      "Signing secret for Stripe webhook deliveries",
  )
  flags.DEFINE_float(
      "platform_fee_percentage",
      DEFAULT_PLATFORM_FEE_PERCENTAGE,
      "Application fee kept by the platform, as a percentage of the order",
  )
  flags.DEFINE_string(
      "root_domain",
      os.environ.get("ROOT_DOMAIN", "example.com"),
      "Root domain under which each shop is served as a subdomain",
  )
  flags.DEFINE_string(
      "url_scheme", "https", "Scheme used for checkout redirect URLs"
  )
except flags.DuplicateFlagError:
  pass


def ensure_flags_parsed() -> None:
  """Marks flags as parsed when running outside of absl.app (e.g. pytest)."""
  if not FLAGS.is_parsed():
    FLAGS.mark_as_parsed()


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
  """Builds the database handle for the lifetime of the app."""
  manager = db.DatabaseManager()
  # In tests the flag is unset and the session dependency is overridden.
  if FLAGS.database_path:
    await manager.init_db(FLAGS.database_path)
  app.state.db_manager = manager
  yield
  await manager.close()
