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

"""Public coupon routes for the storefront."""

from typing import Any

import dependencies
from fastapi import APIRouter
from fastapi import Body
from fastapi import Depends
from fastapi.responses import JSONResponse
from models import CouponValidateRequest
from money import as_float
from services.coupon_service import CouponService

router = APIRouter(prefix="/api/coupons")


@router.post(
    "/validate", response_model=dict[str, Any], operation_id="validate_coupon"
)
async def validate_coupon(
    body: CouponValidateRequest = Body(...),
    coupon_service: CouponService = Depends(dependencies.get_coupon_service),
):
  """Previews a coupon's discount for a subtotal.

  A coupon that does not apply is a normal answer (200 with `valid: false`);
  only a malformed request is a 400.
  """
  if not body.code or body.subtotal is None:
    return JSONResponse(
        status_code=400,
        content={"valid": False, "error": "Missing code or subtotal"},
    )

  result = await coupon_service.validate(body.code, body.subtotal)
  if not result.valid:
    return {"valid": False, "error": result.error}
  return {
      "valid": True,
      "discount": as_float(result.discount),
      "type": result.type,
      "value": as_float(result.value),
      "code": result.code,
  }
