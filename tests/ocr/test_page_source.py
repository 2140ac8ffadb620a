from __future__ import annotations

from io import BytesIO

import pytest
from PIL import Image

from trackrecover.ocr.models import Success
from trackrecover.ocr.page_source import PageSourceError, PdfiumPageSource, open_page_source
from trackrecover.ocr.pipeline import RecoveryPipeline
from trackrecover.ocr.search import GeometricSearchEngine
from trackrecover.ocr.symbol_decoder import NullSymbolDecoder
from trackrecover.ocr.text_extractor import NoopTextExtractor
from trackrecover.ocr.tracking_config import TrackingIdConfig


def _image_pdf(*sizes: tuple[int, int]) -> bytes:
    pages = [Image.new("RGB", size, (255, 255, 255)) for size in sizes]
    buffer = BytesIO()
    pages[0].save(buffer, "PDF", resolution=72.0, save_all=True, append_images=pages[1:])
    return buffer.getvalue()


def _text_pdf(text: str) -> bytes:
    stream = f"BT /F1 12 Tf 20 40 Td ({text}) Tj ET".encode("ascii")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 200 100] /Contents 4 0 R"
        b" /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_offset = len(out)
    out += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_offset)
    return bytes(out)


def test_page_count_and_render_scale() -> None:
    with open_page_source(_image_pdf((100, 50), (40, 60))) as source:
        assert source.page_count == 2
        assert source.rasterize_page(0, 1).size == (100, 50)
        rendered = source.rasterize_page(1, 2)
        assert rendered.size == (80, 120)
        assert rendered.mode == "RGB"


def test_rendering_is_deterministic() -> None:
    with open_page_source(_image_pdf((30, 30))) as source:
        first = source.rasterize_page(0, 3)
        second = source.rasterize_page(0, 3)
    assert first.image.tobytes() == second.image.tobytes()


def test_image_only_page_has_empty_text() -> None:
    with open_page_source(_image_pdf((30, 30))) as source:
        assert source.page_text(0).strip() == ""


def test_text_layer_is_extracted() -> None:
    with open_page_source(_text_pdf("Tracking ALF-20250202-ZZ99")) as source:
        assert "ALF-20250202-ZZ99" in source.page_text(0)


def test_out_of_range_page_raises() -> None:
    with open_page_source(_image_pdf((30, 30))) as source:
        with pytest.raises(PageSourceError):
            source.rasterize_page(3, 1)
        with pytest.raises(PageSourceError):
            source.page_text(-1)


def test_corrupt_document_raises() -> None:
    with pytest.raises(PageSourceError):
        PdfiumPageSource(b"%PDF-1.4 this is not really a pdf")


def test_pipeline_reads_text_layer_of_real_document() -> None:
    pipeline = RecoveryPipeline(
        search_engine=GeometricSearchEngine(NullSymbolDecoder(), max_candidates=1),
        text_extractor=NoopTextExtractor(),
    )
    result = pipeline.run(_text_pdf("Tracking ALF-20250202-ZZ99"), "application/pdf", config=TrackingIdConfig())
    assert result == Success(tracking_id="ALF-20250202-ZZ99", method="text-layer")
