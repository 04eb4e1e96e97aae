from dataclasses import dataclass


TEXT_MIME_PREFIXES = ("text/",)
TEXT_MIME_TYPES = ("application/json", "application/xml", "application/csv")


@dataclass
class OCRResult:
    raw_text: str
    engine: str
    confidence: float | None


class OCRService:
    """
    Stub OCR: text payloads are decoded, everything else yields no text.
    """

    ENGINE = "stub"

    def run_ocr(self, buffer: bytes, mime_type: str | None) -> OCRResult:
        mime = (mime_type or "").lower()
        if mime.startswith(TEXT_MIME_PREFIXES) or mime in TEXT_MIME_TYPES:
            text = buffer.decode("utf-8", errors="replace")
            return OCRResult(raw_text=text, engine=self.ENGINE, confidence=1.0 if text.strip() else 0.0)

        return OCRResult(raw_text="", engine=self.ENGINE, confidence=0.0)
