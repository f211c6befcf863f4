"""OCR stage: download post images, recognize text, classify each post.

Uses Google Cloud Vision ``TEXT_DETECTION``.  Posts and images are handled
one at a time; a failing image is recorded on its post and a failing post is
recorded on the stage, neither stops the loop.
"""

from __future__ import annotations

import logging
import time

import httpx
from google.cloud import vision

from mercado_radar.config import Settings, get_settings
from mercado_radar.schemas import (
    OCRResult,
    OCRText,
    PostOCRResult,
    ScrapedImage,
    ScrapedPost,
    StageResult,
)
from mercado_radar.services.classifier import CatalogClassifier

logger = logging.getLogger(__name__)

# Confidence assumed for words the backend returns without a score.
DEFAULT_WORD_CONFIDENCE = 0.8
NO_TEXT_MESSAGE = "No text detected in image"

_DOWNLOAD_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "image/*,*/*;q=0.8",
    "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
    "Cache-Control": "no-cache",
}


class ImageDownloadError(RuntimeError):
    pass


class VisionOCRClient:
    """Thin async wrapper around the Cloud Vision annotator."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._client: vision.ImageAnnotatorAsyncClient | None = None

    def _get_client(self) -> vision.ImageAnnotatorAsyncClient:
        if self._client is None:
            client_options: dict[str, str] = {}
            if self.settings.google_vision_api_key:
                client_options["api_key"] = self.settings.google_vision_api_key
            elif self.settings.google_application_credentials:
                client_options["credentials_file"] = (
                    self.settings.google_application_credentials
                )
            self._client = vision.ImageAnnotatorAsyncClient(
                client_options=client_options or None
            )
        return self._client

    async def detect_text(self, content: bytes) -> OCRText | None:
        """Return the recognized text, or ``None`` when the image has none."""
        request = vision.AnnotateImageRequest(
            image=vision.Image(content=content),
            features=[vision.Feature(type_=vision.Feature.Type.TEXT_DETECTION)],
        )
        response = await self._get_client().batch_annotate_images(requests=[request])
        result = response.responses[0]
        if result.error.message:
            raise RuntimeError(f"Vision API error: {result.error.message}")

        annotations = list(result.text_annotations)
        if not annotations:
            return None

        # The first annotation holds the full text; the rest are single words.
        return OCRText(
            text=annotations[0].description or "",
            confidence=self.calculate_confidence(
                [getattr(a, "confidence", 0.0) for a in annotations[1:]]
            ),
        )

    @staticmethod
    def calculate_confidence(word_confidences: list[float]) -> float:
        if not word_confidences:
            return DEFAULT_WORD_CONFIDENCE
        total = sum(c or DEFAULT_WORD_CONFIDENCE for c in word_confidences)
        return round(total / len(word_confidences), 2)


class OCRProcessor:
    """Runs OCR over scraped posts and marks the promotional ones."""

    def __init__(
        self,
        ocr_client=None,
        classifier: CatalogClassifier | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.ocr_client = ocr_client or VisionOCRClient()
        self.classifier = classifier or CatalogClassifier()
        self._http_client = http_client
        self._owns_http_client = http_client is None

    # ------------------------------------------------------------------
    # Stage entry point
    # ------------------------------------------------------------------

    async def execute(self, posts: list[ScrapedPost]) -> tuple[StageResult, list[PostOCRResult]]:
        stage = StageResult(name="ocr", processed=len(posts))
        results: list[PostOCRResult] = []
        started = time.monotonic()

        total_images = sum(len(post.images) for post in posts)
        logger.info("Starting OCR for %d posts (%d images)", len(posts), total_images)

        try:
            for post in posts:
                try:
                    post_result = await self.process_post(post)
                except Exception as exc:
                    logger.exception("OCR failed for post %s", post.post_code)
                    stage.record_error(f"Post {post.post_code}: {exc}")
                    continue

                results.append(post_result)
                if post_result.success:
                    stage.succeeded += 1
                else:
                    stage.record_error(
                        f"Post {post.post_code}: no image could be processed"
                    )
                stage.errors.extend(post_result.errors)

                logger.info(
                    "Post %s (%s): %d/%d images, promotion=%s, %d chars",
                    post.post_code,
                    post.market_name,
                    post_result.processed_images,
                    post_result.total_images,
                    post_result.is_promotion_post,
                    len(post_result.combined_text),
                )
        finally:
            await self.close()

        stage.duration = time.monotonic() - started
        stage.details = {
            "total_posts": len(posts),
            "processed_posts": stage.succeeded,
            "total_images": total_images,
            "processed_images": sum(r.processed_images for r in results),
            "promotion_posts": sum(1 for r in results if r.is_promotion_post),
        }
        logger.info(
            "OCR finished: %d/%d posts, %d/%d images, %d promotion posts, %d errors",
            stage.succeeded,
            stage.processed,
            stage.details["processed_images"],
            total_images,
            stage.details["promotion_posts"],
            stage.errored,
        )
        return stage, results

    # ------------------------------------------------------------------
    # Per post / per image
    # ------------------------------------------------------------------

    async def process_post(self, post: ScrapedPost) -> PostOCRResult:
        started = time.monotonic()
        result = PostOCRResult(
            post_id=post.id,
            post_code=post.post_code,
            market_name=post.market_name,
            published_at=post.published_at,
            total_images=len(post.images),
        )

        texts: list[str] = []
        for index, image in enumerate(post.images, start=1):
            ocr_result = await self.process_image(image)
            result.ocr_results.append(ocr_result)
            if ocr_result.success:
                result.processed_images += 1
                texts.append(ocr_result.text)
            elif ocr_result.error and ocr_result.error != NO_TEXT_MESSAGE:
                result.errors.append(
                    f"Post {post.post_code} image {index}: {ocr_result.error}"
                )

        result.combined_text = "\n".join(texts)
        result.is_promotion_post = self.classifier.is_promotion_post(texts)
        # Images without text are a valid outcome; only backend or download
        # errors on every image make the post fail.
        result.success = result.processed_images > 0 or not result.errors
        result.processing_time = time.monotonic() - started
        return result

    async def process_image(self, image: ScrapedImage) -> OCRResult:
        started = time.monotonic()
        result = OCRResult(image_url=image.url)
        try:
            content = await self.download_image(image.url)
            recognized = await self.ocr_client.detect_text(content)
            if recognized is None:
                result.error = NO_TEXT_MESSAGE
                logger.debug("No text found in %s", image.url)
                return result

            result.text = recognized.text
            result.confidence = recognized.confidence
            result.success = True
            result.is_promotion_catalog = self.classifier.is_promotion_catalog(
                recognized.text
            )
        except Exception as exc:
            logger.exception("OCR error for image %s", image.url)
            result.error = str(exc) or exc.__class__.__name__
        finally:
            result.processing_time = time.monotonic() - started
        return result

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0),
                follow_redirects=True,
                headers=_DOWNLOAD_HEADERS,
            )
            self._owns_http_client = True
        return self._http_client

    async def download_image(self, url: str) -> bytes:
        client = await self._get_http_client()
        response = await client.get(url)
        if response.status_code >= 400:
            raise ImageDownloadError(f"HTTP {response.status_code} downloading {url}")

        content_type = response.headers.get("content-type", "")
        if not content_type.startswith("image/"):
            raise ImageDownloadError(f"Invalid content type: {content_type or 'missing'}")

        logger.debug("Downloaded %s (%d KB)", url, len(response.content) // 1024)
        return response.content

    async def close(self) -> None:
        if self._owns_http_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None
