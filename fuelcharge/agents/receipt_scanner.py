"""
Receipt Scanner Agent

DESIGN DECISION: Gemini reads the receipt image and answers with JSON.
The JSON is parsed into a ScannedReceipt (pydantic) right here, at the
boundary, so the ledger never sees free-form model output.

CRITICAL BOUNDARIES:
- CAN: Read items, quantities, prices, total, date, store name
- CAN: Say whether the purchase is fuel
- CANNOT: Persist anything. A scan is a proposal; the ledger service
  re-validates it when staff record it against an account
- MUST: Refuse uploads Pillow cannot decode before spending a model call
- MUST: Fail loudly (ReceiptScanError) on anything it cannot parse

The LLM is a READER, not a BOOKKEEPER.
"""

import json
from io import BytesIO
from typing import Optional

import google.generativeai as genai
from PIL import Image
from pydantic import ValidationError as PydanticValidationError

from fuelcharge.audit import get_logger
from fuelcharge.config import AppSettings, GeminiSettings, get_settings
from fuelcharge.models.receipt import ScannedReceipt


logger = get_logger(__name__)

# Below this, small print on thermal receipts is usually unreadable
MIN_RECEIPT_DIMENSION = 300

RECEIPT_PROMPT = """Analyze this receipt image from a gas station or convenience store.
Extract the items, their quantities, prices, the total amount, the transaction date
and the store name. Identify if any item is fuel (Gasoline, Diesel).

Respond with ONLY a JSON object in this exact format:
{"items": [{"description": "Unleaded", "quantity": 10.5, "price": 3.499}],
 "totalAmount": 36.74, "date": "YYYY-MM-DD", "storeName": "name",
 "isFuelTransaction": true}

Use null for a date or store name you cannot read. Never guess amounts."""


class ReceiptScanError(Exception):
    """The receipt could not be scanned or its result could not be interpreted."""
    pass


class ReceiptScanner:
    """
    Turns a receipt photo into a ScannedReceipt.

    BOUNDARIES:
    - NEVER persists data
    - NEVER fills in fields the model did not return
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        app_settings: Optional[AppSettings] = None,
        model=None,
    ):
        self._settings = settings or get_settings().gemini
        self._app_settings = app_settings or AppSettings()
        self._model = model or self._configure_genai()

    def _configure_genai(self):
        """Configure Google Generative AI."""
        genai.configure(api_key=self._settings.api_key)
        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            generation_config={
                "temperature": self._settings.temperature,
                "max_output_tokens": self._settings.max_tokens,
                "response_mime_type": "application/json",
            }
        )

    def _check_image(self, image: bytes, mime_type: str) -> None:
        if not image:
            raise ReceiptScanError("No image provided")
        if mime_type not in self._app_settings.supported_formats_list:
            raise ReceiptScanError(
                f"Unsupported image type {mime_type}; "
                f"use one of {', '.join(self._app_settings.supported_formats_list)}"
            )
        if len(image) > self._app_settings.max_upload_size_bytes:
            raise ReceiptScanError(
                f"Image is larger than {self._app_settings.max_upload_size_mb} MB"
            )

        try:
            with Image.open(BytesIO(image)) as img:
                img.verify()
                width, height = img.size
        except (OSError, SyntaxError, ValueError) as e:
            raise ReceiptScanError(f"Image could not be read: {e}") from e

        # Small photos still go to the model; totals are often legible anyway
        if min(width, height) < MIN_RECEIPT_DIMENSION:
            logger.warning("receipt_image_low_resolution", width=width, height=height)

    @staticmethod
    def parse_response(text: str) -> ScannedReceipt:
        """
        Parse the model's answer into a ScannedReceipt.

        Tolerates prose or code fences around the JSON object.
        """
        text = (text or "").strip()
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            raise ReceiptScanError("Could not interpret receipt data: no JSON object in response")

        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError as e:
            raise ReceiptScanError(f"Could not interpret receipt data: {e}") from e

        try:
            return ScannedReceipt.model_validate(data)
        except PydanticValidationError as e:
            raise ReceiptScanError(f"Receipt data has an unexpected shape: {e}") from e

    async def scan(self, image: bytes, mime_type: str = "image/jpeg") -> ScannedReceipt:
        """
        Scan a receipt image.

        Raises:
            ReceiptScanError: bad image, model failure, or unusable answer
        """
        self._check_image(image, mime_type)

        try:
            response = await self._model.generate_content_async(
                [{"mime_type": mime_type, "data": image}, RECEIPT_PROMPT]
            )
            text = response.text
        except Exception as e:
            logger.error("receipt_scan_request_failed", error=str(e))
            raise ReceiptScanError(f"Receipt scan failed: {e}") from e

        receipt = self.parse_response(text)
        logger.info(
            "receipt_scanned",
            scan_id=str(receipt.scan_id),
            items=len(receipt.items),
            is_fuel=receipt.is_fuel_transaction,
        )
        return receipt
