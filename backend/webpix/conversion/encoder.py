"""Format encoders: JPEG/PNG -> WebP, GIF -> optimized GIF, SVG -> minified SVG."""
import io
import logging
from pathlib import Path
from typing import Optional

from PIL import Image, ImageChops, ImageSequence
from scour import scour

from webpix.config import GIF_QUALITY, WEBP_QUALITY
from webpix.conversion.models import EncodedImage, ImageKind
from webpix.exceptions import EncodingError, UnsupportedTypeError

logger = logging.getLogger("webpix.encoder")

DEFAULT_FRAME_DURATION_MS = 100


def _open_raster(src: Path) -> Image.Image:
    img = Image.open(src)
    # Decode now so truncated or corrupt data fails here, not halfway through saving.
    try:
        img.load()
    except Exception:
        img.close()
        raise
    return img


def encode_webp(src: Path, quality: int = WEBP_QUALITY) -> EncodedImage:
    with _open_raster(src) as img:
        if img.mode not in ("RGB", "RGBA"):
            has_alpha = img.mode in ("LA", "PA", "RGBa") or "transparency" in img.info
            work = img.convert("RGBA" if has_alpha else "RGB")
        else:
            work = img
        buf = io.BytesIO()
        work.save(buf, format="WEBP", quality=quality)
    return EncodedImage(buf.getvalue(), "webp")


def gif_palette_size(quality: int) -> int:
    """Map a 1-100 quality factor to a palette size: 100 keeps 256 colors, 10 keeps 26."""
    quality = max(1, min(100, quality))
    return max(2, min(256, round(256 * quality / 100)))


def _same_pixels(a: Image.Image, b: Image.Image) -> bool:
    return a.convert("RGBA").tobytes() == b.convert("RGBA").tobytes()


def _first_change(src: Image.Image, previous_src: Image.Image) -> tuple[int, int]:
    """Top-left corner of the area that changed between two source frames, or (0, 0)."""
    bbox = ImageChops.difference(src.convert("RGB"), previous_src.convert("RGB")).getbbox()
    return (bbox[0], bbox[1]) if bbox else (0, 0)


def _force_distinct(frame: Image.Image, position: tuple[int, int]) -> Image.Image:
    """Give one pixel of a palette frame a color one step away from its current one.

    The GIF writer folds a frame that matches its predecessor into the previous
    frame's duration, so a frame that quantized to the same pixels would vanish.
    """
    frame = frame.copy()
    palette = frame.getpalette("RGBA")
    index = frame.getpixel(position)
    r, g, b, a = palette[index * 4:index * 4 + 4]
    count = len(palette) // 4
    if count < 256:
        palette += [r ^ 1, g, b, a]
        frame.putpalette(palette, "RGBA")
        frame.putpixel(position, count)
        return frame
    # Palette is full: move the pixel to the nearest entry with a different color.
    candidates = [
        (sum((x - y) ** 2 for x, y in zip(palette[i * 4:i * 4 + 4], (r, g, b, a))), i)
        for i in range(count)
        if palette[i * 4:i * 4 + 4] != [r, g, b, a]
    ]
    if candidates:
        frame.putpixel(position, min(candidates)[1])
    return frame


def encode_gif(src: Path, quality: int = GIF_QUALITY) -> EncodedImage:
    """Re-encode every frame with a reduced palette, keeping frame count, timing and loop count."""
    colors = gif_palette_size(quality)
    with _open_raster(src) as img:
        frames: list[Image.Image] = []
        durations: list[int] = []
        previous_src: Optional[Image.Image] = None
        for frame in ImageSequence.Iterator(img):
            durations.append(frame.info.get("duration", img.info.get("duration", DEFAULT_FRAME_DURATION_MS)))
            src_frame = frame.convert("RGBA")
            out = src_frame.quantize(colors=colors, method=Image.Quantize.FASTOCTREE)
            if frames and _same_pixels(out, frames[-1]):
                out = _force_distinct(out, _first_change(src_frame, previous_src))
            frames.append(out)
            previous_src = src_frame
        loop = img.info.get("loop")

    first, rest = frames[0], frames[1:]
    save_kw: dict = {"format": "GIF", "optimize": True}
    if rest:
        save_kw.update(save_all=True, append_images=rest, duration=durations, disposal=2)
        if loop is not None:
            save_kw["loop"] = loop
    buf = io.BytesIO()
    first.save(buf, **save_kw)
    return EncodedImage(buf.getvalue(), "gif")


def _svg_options():
    options = scour.sanitizeOptions()
    options.strip_comments = True
    options.remove_metadata = True
    options.strip_xml_prolog = True
    options.strip_xml_space_attribute = True
    options.enable_viewboxing = False
    options.indent_type = "none"
    options.newlines = False
    return options


def encode_svg(src: Path) -> EncodedImage:
    """Minify SVG markup. Structure is optimized, nothing is rasterized."""
    text = src.read_bytes().decode("utf-8")
    optimized = scour.scourString(text, _svg_options())
    return EncodedImage(optimized.encode("utf-8"), "svg")


def encode(src: Path, mime_type: Optional[str], original_name: Optional[str] = None) -> EncodedImage:
    """Encode one staged file according to its declared type.

    Raises UnsupportedTypeError for types outside the dispatch table and
    EncodingError (with the underlying exception as cause) when the codec fails.
    """
    kind = ImageKind.from_mime(mime_type)
    name = original_name or src.name
    if kind is None:
        raise UnsupportedTypeError(mime_type)
    try:
        if kind in (ImageKind.JPEG, ImageKind.PNG):
            encoded = encode_webp(src)
        elif kind == ImageKind.GIF:
            encoded = encode_gif(src)
        elif kind == ImageKind.SVG:
            encoded = encode_svg(src)
        else:
            raise UnsupportedTypeError(mime_type)
    except UnsupportedTypeError:
        raise
    except Exception as e:
        logger.exception("Encoding failed for %s (%s): %s", name, mime_type, e)
        raise EncodingError(name, e) from e
    logger.info("Encoded %s (%s) -> %s, %s bytes", name, mime_type, encoded.fmt, encoded.size)
    return encoded
