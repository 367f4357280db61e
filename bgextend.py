"""Extend an image to a target aspect ratio over a two-tone edge-colour background.

Instead of stretching or padding with a flat colour, the image is trimmed to
an exact multiple of the ratio, two colours are sampled from opposite edges,
and the trimmed image is centred on a canvas split between those colours.

Jobs are read as a JSON list from a file or standard input::

  [{"source": "in.jpg", "destination": "out.png", "aspectRatio": [4, 5]}]
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import shutil
import sys
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import IO, Any, Final, Iterable, Sequence

from PIL import Image

Color = tuple[int, int, int, int]
AspectRatio = tuple[int, int]

EDGE_FRACTION: Final = 0.05
DEFAULT_QUALITY: Final = 95
_ALPHALESS_SUFFIXES: Final = {".jpg", ".jpeg"}


# ------------------------- errors -------------------------
class ExtendError(Exception):
    """Base class for per-job failures."""

    category = "extend"


class ImageIOError(ExtendError):
    category = "io"


class ImageCodecError(ExtendError):
    category = "image"


class GeometryError(ExtendError):
    """A crop or paste region fell outside its buffer."""

    category = "geometry"


class JobListError(ValueError):
    pass


def _wrap_os_error(exc: OSError, action: str) -> ExtendError:
    # OS-level failures carry an errno; Pillow's own OSErrors do not.
    if exc.errno is not None:
        return ImageIOError(f"cannot {action}: {exc}")
    return ImageCodecError(f"cannot {action}: {exc}")


# ------------------------- jobs -------------------------
@dataclass(frozen=True)
class ImageJob:
    source: Path
    destination: Path
    aspect_ratio: AspectRatio

    @classmethod
    def from_record(cls, record: Any) -> "ImageJob":
        """Build a job from a ``{source, destination, aspectRatio}`` mapping."""

        if not isinstance(record, dict):
            raise JobListError(f"job must be an object, got {type(record).__name__}")
        missing = [k for k in ("source", "destination", "aspectRatio") if k not in record]
        if missing:
            raise JobListError(f"job is missing field(s): {', '.join(missing)}")

        source, destination = record["source"], record["destination"]
        if not isinstance(source, str) or not isinstance(destination, str):
            raise JobListError("source and destination must be strings")
        return cls(Path(source), Path(destination), _parse_ratio(record["aspectRatio"]))


def _parse_ratio(value: Any) -> AspectRatio:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise JobListError(f"aspectRatio must be a [width, height] pair, got {value!r}")
    for part in value:
        # bool is an int subclass; reject it explicitly
        if isinstance(part, bool) or not isinstance(part, int) or part <= 0:
            raise JobListError(
                f"aspectRatio components must be positive integers, got {value!r}"
            )
    return int(value[0]), int(value[1])


def parse_jobs(data: Any) -> list[ImageJob]:
    if not isinstance(data, list):
        raise JobListError("job list must be a JSON array")
    jobs = []
    for index, record in enumerate(data):
        try:
            jobs.append(ImageJob.from_record(record))
        except JobListError as exc:
            raise JobListError(f"job {index}: {exc}") from exc
    return jobs


def load_jobs(stream: IO[str]) -> list[ImageJob]:
    try:
        data = json.load(stream)
    except json.JSONDecodeError as exc:
        raise JobListError(f"invalid JSON: {exc}") from exc
    return parse_jobs(data)


# ------------------------- geometry -------------------------
class Orientation(Enum):
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"


@dataclass(frozen=True)
class Reconciliation:
    """How far an image's dimensions are from an exact multiple of a ratio."""

    width_multiplier: int
    width_overflow: int
    height_multiplier: int
    height_overflow: int

    @property
    def multipliers(self) -> tuple[int, int]:
        return self.width_multiplier, self.height_multiplier

    @property
    def overflow(self) -> tuple[int, int]:
        return self.width_overflow, self.height_overflow

    @property
    def is_exact(self) -> bool:
        return (
            self.width_overflow == 0
            and self.height_overflow == 0
            and self.width_multiplier == self.height_multiplier
        )

    @property
    def orientation(self) -> Orientation:
        # Equal multipliers with leftover pixels count as portrait.
        if self.width_multiplier > self.height_multiplier:
            return Orientation.LANDSCAPE
        return Orientation.PORTRAIT


def reconcile(width: int, height: int, ratio: AspectRatio) -> Reconciliation:
    ratio_width, ratio_height = ratio
    width_multiplier, width_overflow = divmod(width, ratio_width)
    height_multiplier, height_overflow = divmod(height, ratio_height)
    return Reconciliation(width_multiplier, width_overflow, height_multiplier, height_overflow)


def trim_image(image: Image.Image, overflow: tuple[int, int]) -> Image.Image:
    """Crop *overflow* pixels per axis, split between both sides.

    Odd overflow removes the extra pixel from the trailing edge.
    """

    width, height = image.size
    width_overflow, height_overflow = overflow
    left, top = width_overflow // 2, height_overflow // 2
    new_width, new_height = width - width_overflow, height - height_overflow

    if new_width <= 0 or new_height <= 0:
        raise GeometryError(
            f"{width}x{height} image is smaller than one aspect ratio unit"
        )
    if left < 0 or top < 0 or left + new_width > width or top + new_height > height:
        raise GeometryError(
            f"trim region {new_width}x{new_height}+{left}+{top} "
            f"outside {width}x{height} image"
        )
    return image.crop((left, top, left + new_width, top + new_height))


def edge_length(length: int) -> int:
    return max(1, math.floor(length * EDGE_FRACTION))


def sample_color(strip: Image.Image) -> Color:
    """Reduce *strip* to one colour with a nearest-neighbour 1x1 resize.

    This picks the strip's centre pixel rather than averaging it.
    """

    pixel = strip.convert("RGBA").resize((1, 1), Image.Resampling.NEAREST).getpixel((0, 0))
    return tuple(pixel)  # type: ignore[return-value]


def sample_edge_colors(image: Image.Image, orientation: Orientation) -> tuple[Color, Color]:
    """Return colours for the (top, bottom) or (left, right) edge strips."""

    width, height = image.size
    if orientation is Orientation.LANDSCAPE:
        edge = min(edge_length(height), height)
        first = image.crop((0, 0, width, edge))
        second = image.crop((0, height - edge, width, height))
    else:
        edge = min(edge_length(width), width)
        first = image.crop((0, 0, edge, height))
        second = image.crop((width - edge, 0, width, height))
    return sample_color(first), sample_color(second)


def canvas_size(
    ratio: AspectRatio, multipliers: tuple[int, int], orientation: Orientation
) -> tuple[int, int]:
    ratio_width, ratio_height = ratio
    width_multiplier, height_multiplier = multipliers
    multiplier = (
        width_multiplier if orientation is Orientation.LANDSCAPE else height_multiplier
    )
    return ratio_width * multiplier, ratio_height * multiplier


def paint_split_background(
    size: tuple[int, int], first: Color, second: Color, orientation: Orientation
) -> Image.Image:
    """Return an RGBA canvas split between *first* and *second*.

    Landscape: rows below the middle row take *first* (the top-edge colour),
    the middle row and above take *second*. Portrait: columns left of the
    middle take *first*, the rest take *second*.
    """

    width, height = size
    canvas = Image.new("RGBA", size, second)
    if orientation is Orientation.LANDSCAPE:
        split = height // 2 + 1
        if split < height:
            canvas.paste(first, (0, split, width, height))
    else:
        split = width // 2
        if split > 0:
            canvas.paste(first, (0, 0, split, height))
    return canvas


def center_offset(canvas: tuple[int, int], image: tuple[int, int]) -> tuple[int, int]:
    return (
        max(canvas[0] - image[0], 0) // 2,
        max(canvas[1] - image[1], 0) // 2,
    )


def composite_centered(canvas: Image.Image, image: Image.Image) -> Image.Image:
    offset_x, offset_y = center_offset(canvas.size, image.size)
    if offset_x + image.width > canvas.width or offset_y + image.height > canvas.height:
        raise GeometryError(
            f"{image.width}x{image.height} image does not fit "
            f"{canvas.width}x{canvas.height} canvas"
        )
    canvas.paste(image, (offset_x, offset_y))
    return canvas


def extend_image(
    image: Image.Image, ratio: AspectRatio, fit: Reconciliation | None = None
) -> Image.Image:
    """Return *image* letterboxed to *ratio* over its sampled edge colours.

    *fit* may be passed when the caller has already reconciled the image.
    """

    if image.mode != "RGBA":
        image = image.convert("RGBA")
    if fit is None:
        fit = reconcile(image.width, image.height, ratio)
    if fit.is_exact:
        return image

    orientation = fit.orientation
    logging.debug(
        "multipliers=%s overflow=%s orientation=%s",
        fit.multipliers,
        fit.overflow,
        orientation.value,
    )

    trimmed = trim_image(image, fit.overflow)
    first, second = sample_edge_colors(trimmed, orientation)
    size = canvas_size(ratio, fit.multipliers, orientation)
    logging.debug("edge colours %s / %s, canvas %dx%d", first, second, *size)

    canvas = paint_split_background(size, first, second, orientation)
    return composite_centered(canvas, trimmed)


# ------------------------- orchestration -------------------------
def _read_image(path: Path) -> Image.Image:
    try:
        with Image.open(path) as image:
            image.load()
            return image.convert("RGBA")
    except OSError as exc:
        raise _wrap_os_error(exc, f"read {path}") from exc
    except (ValueError, Image.DecompressionBombError) as exc:
        raise ImageCodecError(f"cannot decode {path}: {exc}") from exc


def _write_image(image: Image.Image, path: Path, quality: int) -> None:
    if path.suffix.lower() in _ALPHALESS_SUFFIXES:
        image = image.convert("RGB")
    try:
        image.save(path, quality=quality)
    except OSError as exc:
        raise _wrap_os_error(exc, f"write {path}") from exc
    except (ValueError, KeyError) as exc:
        raise ImageCodecError(f"cannot encode {path}: {exc}") from exc


def compile_image(job: ImageJob, quality: int = DEFAULT_QUALITY) -> Path:
    """Process one job and return its destination path.

    Images that already match the ratio are copied byte for byte.
    """

    _compile(job, quality)
    return job.destination


def _compile(job: ImageJob, quality: int) -> bool:
    """Run *job*; return True when the source was copied unchanged."""

    image = _read_image(job.source)
    fit = reconcile(image.width, image.height, job.aspect_ratio)

    if fit.is_exact:
        try:
            shutil.copyfile(job.source, job.destination)
        except OSError as exc:
            raise ImageIOError(
                f"cannot copy {job.source} to {job.destination}: {exc}"
            ) from exc
        logging.info("copied %s (already %d:%d)", job.source, *job.aspect_ratio)
        return True

    _write_image(extend_image(image, job.aspect_ratio, fit), job.destination, quality)
    logging.info("extended %s to %d:%d", job.source, *job.aspect_ratio)
    return False


@dataclass(frozen=True)
class JobResult:
    job: ImageJob
    destination: Path | None = None
    error: ExtendError | None = None
    copied: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def run_job(job: ImageJob, quality: int = DEFAULT_QUALITY) -> JobResult:
    try:
        copied = _compile(job, quality)
    except ExtendError as exc:
        return JobResult(job, error=exc)
    return JobResult(job, destination=job.destination, copied=copied)


def run_batch(
    jobs: Iterable[ImageJob], workers: int = 1, quality: int = DEFAULT_QUALITY
) -> list[JobResult]:
    """Run every job, isolating failures; results keep input order."""

    jobs = list(jobs)
    if workers <= 1 or len(jobs) <= 1:
        return [run_job(job, quality) for job in jobs]
    with ThreadPoolExecutor(max_workers=workers) as ex:
        return list(ex.map(lambda job: run_job(job, quality), jobs))


def report(results: Sequence[JobResult]) -> int:
    """Print successes to stdout, log failures; return the failure count."""

    failed = 0
    for result in results:
        error = result.error
        if error is None:
            print(result.destination)
            continue
        failed += 1
        logging.error("%s error: %s: %s", error.category, result.job.source, error)
    return failed


def _read_job_list(location: str) -> list[ImageJob]:
    if location == "-":
        return load_jobs(sys.stdin)
    try:
        with open(location, encoding="utf-8") as fh:
            return load_jobs(fh)
    except OSError as exc:
        raise JobListError(f"cannot read job list {location}: {exc}") from exc


def main(argv: Sequence[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        description="Extend images to a target aspect ratio over a split edge-colour background."
    )
    ap.add_argument(
        "jobs",
        nargs="?",
        default="-",
        help="JSON job list ([{source, destination, aspectRatio}]); '-' or omitted reads stdin.",
    )
    ap.add_argument(
        "-w", "--workers", type=int, default=1, help="Worker threads. Default: 1"
    )
    ap.add_argument(
        "--quality",
        type=int,
        default=DEFAULT_QUALITY,
        help=f"Encoder quality for lossy formats (1-100). Default: {DEFAULT_QUALITY}",
    )
    ap.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity.",
    )
    args = ap.parse_args(argv)

    level = (
        logging.WARNING
        if args.verbose == 0
        else (logging.INFO if args.verbose == 1 else logging.DEBUG)
    )
    logging.basicConfig(
        level=level, stream=sys.stderr, format="%(levelname)s: %(message)s"
    )

    if args.workers < 1:
        ap.error("--workers must be at least 1")
    if not 1 <= args.quality <= 100:
        ap.error("--quality must be between 1 and 100")

    try:
        jobs = _read_job_list(args.jobs)
    except JobListError as exc:
        logging.error("%s", exc)
        sys.exit(2)

    if not jobs:
        logging.warning("no jobs to process")
        return

    failed = report(run_batch(jobs, workers=args.workers, quality=args.quality))
    logging.info(
        "%d of %d job%s succeeded",
        len(jobs) - failed,
        len(jobs),
        "" if len(jobs) == 1 else "s",
    )
    if failed:
        sys.exit(1)


if __name__ == "__main__":  # pragma: no cover - entrypoint
    main()
