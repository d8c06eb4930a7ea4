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

"""Payment provider webhook route."""

import dependencies
from fastapi import APIRouter
from fastapi import Depends
from fastapi import Header
from fastapi import Request
from models import WebhookResult
from services.webhook_processor import WebhookProcessor

router = APIRouter(tags=["webhooks"])


@router.post(
    "/webhook/stripe",
    response_model=WebhookResult,
    operation_id="stripe_webhook",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header("", alias="Stripe-Signature"),
    processor: WebhookProcessor = Depends(dependencies.get_webhook_processor),
) -> WebhookResult:
  """Receive a signed Stripe event.

  The raw body is passed through untouched; signature verification needs
  the exact bytes that were signed.
  """
  payload = await request.body()
  return await processor.process(payload, stripe_signature)
