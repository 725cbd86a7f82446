#!/usr/bin/env python3

import argparse
import json
import logging
import os
import re
import shlex
import shutil
import subprocess
import sys
import threading
import time
import xml.etree.ElementTree as ET
from typing import IO, Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

import requests

__version__ = "1.3.2"

M4S_EXT = ".m4s"
SENTINEL = b"000000000"
VIDEO_SUFFIX = "-video.mp4"
AUDIO_SUFFIX = "-audio.m4a"
PLAYURL_NAMES = (".playurl", "playurl.json")
VIDEO_INFO_NAMES = ("videoInfo.json", ".videoInfo")
OUTPUT_DIR_NAME = "output"
SUBTITLE_EXT = ".ass"
XML_EXT = ".xml"
COMPLETED = "completed"
DEFAULT_CONTAINER = "mp4"
DANMAKU_URL = "https://comment.bilibili.com/{cid}.xml"
DANMAKU_TIMEOUT = 20

ROLE_VIDEO = "video"
ROLE_AUDIO = "audio"

_FILENAME_SUBSTITUTIONS = str.maketrans(
    {
        "<": "《",
        ">": "》",
        "\\": "#",
        '"': "'",
        "/": "_",
        "|": "_",
        "?": "_",
        "*": "_",
        "【": "[",
        "】": "]",
        ":": "：",
    }
)

_ID_TOKEN = re.compile(r"\d+")

ASS_PLAY_RES = (1920, 1080)
ASS_FONT = "Microsoft YaHei"
ASS_FONT_SIZE = 42
ASS_SCROLL_SECONDS = 8.0
ASS_FIXED_SECONDS = 4.0
_DANMAKU_SCROLL_MODES = {"1", "2", "3"}
_DANMAKU_BOTTOM_MODE = "4"
_DANMAKU_TOP_MODE = "5"


class M4sMergeError(Exception):
    pass


class ManifestUnavailable(M4sMergeError):
    pass


class OutputDirectoryError(M4sMergeError):
    pass


class MuxerUnavailable(M4sMergeError):
    pass


class DanmakuError(M4sMergeError):
    pass


class PlayIds(NamedTuple):
    video_id: str
    audio_id: str


class SessionInfo(NamedTuple):
    path: str
    group_title: str
    title: str
    uname: str
    status: str


class ResolvedSession(NamedTuple):
    info: SessionInfo
    video: str
    audio: str
    subtitle: Optional[str] = None


class MuxOptions(NamedTuple):
    ffmpeg_path: str
    overwrite: bool = False


class MergeResult(NamedTuple):
    status: str
    output: str
    returncode: Optional[int] = None


class Config(NamedTuple):
    cache_path: str
    ffmpeg_path: str
    overwrite: bool = False
    danmaku: bool = True
    danmaku_url: str = DANMAKU_URL
    container: str = DEFAULT_CONTAINER
    open_output: bool = True
    pause: bool = True
    log_file: Optional[str] = None
    verbose: int = 0

    @property
    def mux_options(self) -> MuxOptions:
        return MuxOptions(ffmpeg_path=self.ffmpeg_path, overwrite=self.overwrite)


class RunSummary:
    def __init__(self) -> None:
        self.skipped: List[str] = []
        self.outputs: List[str] = []
        self.failed: List[str] = []
        self.output_dirs: List[str] = []

    def record_output(self, path: str) -> None:
        self.outputs.append(path)
        out_dir = os.path.dirname(os.path.dirname(path))
        if out_dir not in self.output_dirs:
            self.output_dirs.append(out_dir)


def notify(text: str) -> None:
    logging.error("%s", text)


def _print_command(cmd: Sequence[str]) -> None:
    logging.debug("%s", " ".join(shlex.quote(str(part)) for part in cmd))


def _raise_walk_error(exc: OSError) -> None:
    raise exc


def _load_json(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        raise ManifestUnavailable(f"cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ManifestUnavailable(f"unexpected manifest layout: {path}")
    return data


def _first_existing(directory: str, names: Sequence[str]) -> Optional[str]:
    for name in names:
        candidate = os.path.join(directory, name)
        if os.path.isfile(candidate):
            return candidate
    return None


def _first_stream_id(container: Dict[str, Any], kind: str) -> Optional[str]:
    streams = container.get(kind)
    if not isinstance(streams, list) or not streams:
        return None
    first = streams[0]
    if not isinstance(first, dict):
        return None
    stream_id = first.get("id")
    if isinstance(stream_id, bool) or not isinstance(stream_id, (int, str)):
        return None
    text = str(stream_id).strip()
    return text or None


def _dash_section(doc: Dict[str, Any]) -> Dict[str, Any]:
    data = doc.get("data")
    if isinstance(data, dict) and isinstance(data.get("dash"), dict):
        return data["dash"]
    if isinstance(doc.get("dash"), dict):
        return doc["dash"]
    return doc


def read_play_ids(directory: str) -> PlayIds:
    path = _first_existing(directory, PLAYURL_NAMES)
    if path is None:
        raise ManifestUnavailable(f"no play manifest in {directory}")
    dash = _dash_section(_load_json(path))
    video_id = _first_stream_id(dash, "video")
    audio_id = _first_stream_id(dash, "audio")
    if video_id is None or audio_id is None:
        raise ManifestUnavailable(f"play manifest lacks stream ids: {path}")
    return PlayIds(video_id=video_id, audio_id=audio_id)


def fragment_role(name: str, ids: PlayIds) -> str:
    stem = name[: -len(M4S_EXT)] if name.endswith(M4S_EXT) else name
    if ids.audio_id in _ID_TOKEN.findall(stem):
        return ROLE_AUDIO
    return ROLE_VIDEO


def repaired_path(path: str, role: str) -> str:
    suffix = AUDIO_SUFFIX if role == ROLE_AUDIO else VIDEO_SUFFIX
    base = path[: -len(M4S_EXT)] if path.endswith(M4S_EXT) else path
    return base + suffix


def classify_fragment(path: str) -> Tuple[str, str]:
    ids = read_play_ids(os.path.dirname(path))
    role = fragment_role(os.path.basename(path), ids)
    return role, repaired_path(path, role)


def repair_fragment(src: str, dst: str) -> bool:
    with open(src, "rb") as fin:
        head = fin.read(len(SENTINEL))
        if head != SENTINEL:
            logging.warning("fragment header is not the sentinel, skipping: %s", src)
            return False
        fin.seek(len(SENTINEL))
        with open(dst, "wb") as fout:
            shutil.copyfileobj(fin, fout)
    return True


def walk_cache(root: str) -> List[str]:
    repaired: List[str] = []
    for dirpath, dirs, files in os.walk(root, onerror=_raise_walk_error):
        dirs.sort()
        for name in sorted(files):
            if not name.endswith(M4S_EXT):
                continue
            src = os.path.join(dirpath, name)
            try:
                role, dst = classify_fragment(src)
            except ManifestUnavailable as exc:
                logging.error("cannot classify %s: %s", src, exc)
                continue
            try:
                if not repair_fragment(src, dst):
                    continue
            except OSError as exc:
                logging.error("failed to repair %s -> %s: %s", src, dst, exc)
                continue
            logging.info("repaired %s fragment: %s", role, dst)
            repaired.append(dst)
    return repaired


def list_session_dirs(root: str) -> List[str]:
    dirs: List[str] = []
    for dirpath, subdirs, _files in os.walk(root, onerror=_raise_walk_error):
        subdirs.sort()
        for name in subdirs:
            path = os.path.join(dirpath, name)
            if OUTPUT_DIR_NAME in os.path.relpath(path, root):
                continue
            dirs.append(path)
    return sorted(dirs)


def find_session_dirs(root: str) -> List[str]:
    dirs = list_session_dirs(root)
    if not dirs and _first_existing(root, VIDEO_INFO_NAMES):
        dirs = [root]
    return dirs


def sanitize_filename(name: str) -> str:
    return name.translate(_FILENAME_SUBSTITUTIONS).strip()


def _text_field(doc: Dict[str, Any], key: str) -> str:
    value = doc.get(key)
    return value if isinstance(value, str) else ""


def read_session_info(directory: str) -> SessionInfo:
    path = _first_existing(directory, VIDEO_INFO_NAMES)
    if path is None:
        raise ManifestUnavailable(f"no session manifest in {directory}")
    doc = _load_json(path)
    return SessionInfo(
        path=directory,
        group_title=sanitize_filename(_text_field(doc, "groupTitle")),
        title=sanitize_filename(_text_field(doc, "title")),
        uname=sanitize_filename(_text_field(doc, "uname")),
        status=sanitize_filename(_text_field(doc, "status")),
    )


def find_stream_pair(
    directory: str, danmaku: Optional["DanmakuSource"] = None
) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    video: Optional[str] = None
    audio: Optional[str] = None
    subtitle: Optional[str] = None
    for dirpath, dirs, files in os.walk(directory, onerror=_raise_walk_error):
        dirs.sort()
        if danmaku is not None:
            cid = os.path.basename(os.path.normpath(dirpath))
            try:
                subtitle = danmaku.fetch(cid, dirpath)
            except DanmakuError as exc:
                logging.warning("danmaku unavailable for %s: %s", dirpath, exc)
        for name in sorted(files):
            path = os.path.join(dirpath, name)
            if video is None and name.endswith(VIDEO_SUFFIX):
                video = path
            elif audio is None and name.endswith(AUDIO_SUFFIX):
                audio = path
    return video, audio, subtitle


def resolve_session(
    directory: str,
    danmaku: Optional["DanmakuSource"],
    summary: RunSummary,
) -> Optional[ResolvedSession]:
    if _first_existing(directory, VIDEO_INFO_NAMES) is None:
        logging.info("not a session directory, skipping %s", directory)
        return None
    try:
        info = read_session_info(directory)
    except ManifestUnavailable as exc:
        logging.error("session manifest unreadable, skipping %s: %s", directory, exc)
        return None
    if info.status != COMPLETED:
        logging.warning(
            "download not completed, skipping %s (%s-%s)",
            directory,
            info.title,
            info.uname,
        )
        summary.skipped.append(directory)
        return None
    try:
        video, audio, subtitle = find_stream_pair(directory, danmaku)
    except OSError as exc:
        logging.error("cannot list session %s: %s", directory, exc)
        summary.skipped.append(directory)
        return None
    if video is None or audio is None:
        logging.error("repaired audio/video pair not found in %s", directory)
        summary.skipped.append(directory)
        return None
    return ResolvedSession(info=info, video=video, audio=audio, subtitle=subtitle)


def prepare_output_path(info: SessionInfo, container: str = DEFAULT_CONTAINER) -> str:
    parent = os.path.dirname(os.path.normpath(info.path))
    output_dir = os.path.join(parent, OUTPUT_DIR_NAME)
    group_dir = os.path.join(output_dir, f"{info.group_title}-{info.uname}")
    try:
        os.makedirs(group_dir, exist_ok=True)
    except OSError as exc:
        raise OutputDirectoryError(f"cannot create directory {group_dir}: {exc}") from exc
    return os.path.join(group_dir, f"{info.title}.{container}")


def build_mux_command(
    opts: MuxOptions, video: str, audio: str, output: str
) -> List[str]:
    return [
        opts.ffmpeg_path,
        "-i",
        video,
        "-i",
        audio,
        "-c:v",
        "copy",
        "-c:a",
        "copy",
        "-strict",
        "experimental",
        "-y" if opts.overwrite else "-n",
        output,
        "-hide_banner",
        "-stats",
    ]


def _drain_stdout(stream: IO[bytes]) -> None:
    with stream:
        for chunk in iter(stream.readline, b""):
            sys.stdout.write(chunk.decode("utf-8", "replace"))
            sys.stdout.flush()


def _drain_stderr(stream: IO[bytes], seen_exists: threading.Event) -> None:
    with stream:
        for line in iter(stream.readline, b""):
            text = line.decode("utf-8", "replace").rstrip()
            if "exists" in text:
                seen_exists.set()
            if text:
                logging.debug("ffmpeg: %s", text)


def _copy_subtitle(subtitle: Optional[str], output: str) -> None:
    if not subtitle:
        return
    target = os.path.splitext(output)[0] + SUBTITLE_EXT
    try:
        shutil.copyfile(subtitle, target)
    except OSError as exc:
        logging.error("failed to copy subtitle %s -> %s: %s", subtitle, target, exc)
        return
    logging.info("copied subtitle: %s", target)


def run_muxer(
    cmd: Sequence[str], output: str, subtitle: Optional[str] = None
) -> Tuple[int, bool]:
    _print_command(cmd)
    try:
        proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except OSError as exc:
        raise MuxerUnavailable(f"failed to run {cmd[0]}: {exc}") from exc

    seen_exists = threading.Event()
    readers = [
        threading.Thread(target=_drain_stdout, args=(proc.stdout,), daemon=True),
        threading.Thread(
            target=_drain_stderr, args=(proc.stderr, seen_exists), daemon=True
        ),
    ]
    for reader in readers:
        reader.start()

    _copy_subtitle(subtitle, output)

    returncode = proc.wait()
    for reader in readers:
        reader.join()
    return returncode, seen_exists.is_set()


def merge_session(
    session: ResolvedSession, opts: MuxOptions, container: str = DEFAULT_CONTAINER
) -> MergeResult:
    output = prepare_output_path(session.info, container)
    cmd = build_mux_command(opts, session.video, session.audio, output)
    logging.info("merging: %s", os.path.basename(output))
    returncode, seen_exists = run_muxer(cmd, output, session.subtitle)

    if returncode == 0:
        logging.info("merged: %s", os.path.basename(output))
        return MergeResult("merged", output, returncode)
    if seen_exists:
        logging.warning("output already exists, skipping: %s", os.path.basename(output))
        return MergeResult("exists", output, returncode)
    logging.error("ffmpeg exited with code %s for %s", returncode, output)
    return MergeResult("failed", output, returncode)


def _ass_time(seconds: float) -> str:
    centis = int(round(max(seconds, 0.0) * 100))
    hours, centis = divmod(centis, 360000)
    minutes, centis = divmod(centis, 6000)
    secs, centis = divmod(centis, 100)
    return f"{hours}:{minutes:02d}:{secs:02d}.{centis:02d}"


def _ass_color(rgb: int) -> str:
    r, g, b = (rgb >> 16) & 0xFF, (rgb >> 8) & 0xFF, rgb & 0xFF
    return f"&H{b:02X}{g:02X}{r:02X}&"


def _ass_escape(text: str) -> str:
    text = text.replace("\\", "\\\\").replace("{", "\\{").replace("}", "\\}")
    return text.replace("\r", "").replace("\n", "\\N")


def _parse_danmaku(xml_text: str) -> List[Tuple[float, str, int, int, str]]:
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise DanmakuError(f"invalid danmaku xml: {exc}") from exc
    items: List[Tuple[float, str, int, int, str]] = []
    for node in root.iter("d"):
        text = (node.text or "").strip()
        fields = (node.get("p") or "").split(",")
        if not text or len(fields) < 4:
            continue
        try:
            start = float(fields[0])
            size = int(fields[2])
            color = int(fields[3])
        except ValueError:
            continue
        items.append((start, fields[1], size, color, text))
    items.sort(key=lambda item: item[0])
    return items


def _pick_row(rows: List[float], start: float) -> int:
    for index, free_at in enumerate(rows):
        if free_at <= start:
            return index
    return min(range(len(rows)), key=lambda index: rows[index])


def danmaku_xml_to_ass(xml_text: str, title: str = "") -> str:
    width, height = ASS_PLAY_RES
    row_height = ASS_FONT_SIZE + 4
    row_count = max(height // row_height, 1)
    scroll_rows = [0.0] * row_count
    top_rows = [0.0] * row_count
    bottom_rows = [0.0] * row_count

    lines = [
        "[Script Info]",
        f"Title: {title}",
        "ScriptType: v4.00+",
        "WrapStyle: 2",
        "ScaledBorderAndShadow: yes",
        f"PlayResX: {width}",
        f"PlayResY: {height}",
        "",
        "[V4+ Styles]",
        "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, "
        "OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, "
        "ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow, Alignment, "
        "MarginL, MarginR, MarginV, Encoding",
        f"Style: Danmaku,{ASS_FONT},{ASS_FONT_SIZE},&H33FFFFFF,&H33FFFFFF,"
        "&H33000000,&H33000000,0,0,0,0,100,100,0,0,1,1,0,7,0,0,0,1",
        "",
        "[Events]",
        "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, "
        "Effect, Text",
    ]

    for start, mode, size, color, text in _parse_danmaku(xml_text):
        font_size = max(int(round(ASS_FONT_SIZE * size / 25.0)), 1)
        text_width = len(text) * font_size
        overrides = ""
        if font_size != ASS_FONT_SIZE:
            overrides += f"\\fs{font_size}"
        if color != 0xFFFFFF:
            overrides += f"\\c{_ass_color(color)}"

        if mode in _DANMAKU_SCROLL_MODES:
            end = start + ASS_SCROLL_SECONDS
            row = _pick_row(scroll_rows, start)
            scroll_rows[row] = start + ASS_SCROLL_SECONDS * text_width / (
                width + text_width
            )
            y = row * row_height
            position = f"\\move({width},{y},{-text_width},{y})"
        elif mode in (_DANMAKU_TOP_MODE, _DANMAKU_BOTTOM_MODE):
            end = start + ASS_FIXED_SECONDS
            rows = top_rows if mode == _DANMAKU_TOP_MODE else bottom_rows
            row = _pick_row(rows, start)
            rows[row] = end
            if mode == _DANMAKU_TOP_MODE:
                position = f"\\an8\\pos({width // 2},{row * row_height})"
            else:
                position = f"\\an2\\pos({width // 2},{height - row * row_height})"
        else:
            continue

        lines.append(
            f"Dialogue: 2,{_ass_time(start)},{_ass_time(end)},Danmaku,,0,0,0,,"
            f"{{{position}{overrides}}}{_ass_escape(text)}"
        )
    return "\n".join(lines) + "\n"


class DanmakuSource:
    def __init__(
        self,
        url_template: str = DANMAKU_URL,
        session: Optional[requests.Session] = None,
        timeout: float = DANMAKU_TIMEOUT,
    ) -> None:
        self.url_template = url_template
        self.session = session or requests.Session()
        self.timeout = timeout

    def url_for(self, cid: str) -> str:
        return self.url_template.format(cid=cid)

    def download(self, cid: str, xml_path: str) -> str:
        url = self.url_for(cid)
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise DanmakuError(f"failed to download {url}: {exc}") from exc
        text = response.content.decode("utf-8", "replace")
        try:
            with open(xml_path, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as exc:
            raise DanmakuError(f"failed to save {xml_path}: {exc}") from exc
        return text

    def fetch(self, cid: str, directory: str) -> str:
        xml_path = os.path.join(directory, cid + XML_EXT)
        xml_text = self.download(cid, xml_path)
        ass_path = os.path.splitext(xml_path)[0] + SUBTITLE_EXT
        try:
            with open(ass_path, "w", encoding="utf-8-sig") as f:
                f.write(danmaku_xml_to_ass(xml_text, title=cid))
        except OSError as exc:
            raise DanmakuError(f"failed to write {ass_path}: {exc}") from exc
        logging.info("converted danmaku: %s", ass_path)
        return ass_path


def _open_folder(path: str) -> None:
    if sys.platform.startswith("win"):
        cmd = ["explorer", path]
    elif sys.platform == "darwin":
        cmd = ["open", path]
    else:
        cmd = ["xdg-open", path]
    try:
        subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError as exc:
        logging.debug("cannot open %s: %s", path, exc)


def _log_summary(summary: RunSummary, elapsed: float) -> None:
    logging.warning("==========================================")
    if summary.skipped:
        logging.warning("skipped directories:\n%s", "\n".join(summary.skipped))
    if summary.failed:
        logging.warning("failed sessions:\n%s", "\n".join(summary.failed))
    if summary.outputs:
        logging.warning("merged files:\n%s", "\n".join(summary.outputs))
    else:
        logging.warning("no files merged")
    logging.warning("finished in %.0f seconds", elapsed)
    logging.warning("==========================================")


def run(
    config: Config,
    danmaku: Optional[DanmakuSource] = None,
) -> RunSummary:
    began = time.monotonic()
    summary = RunSummary()
    if not os.path.isdir(config.cache_path):
        raise FileNotFoundError(f"cache directory not found: {config.cache_path}")

    walk_cache(config.cache_path)

    if danmaku is None and config.danmaku:
        danmaku = DanmakuSource(config.danmaku_url)

    opts = config.mux_options
    for directory in find_session_dirs(config.cache_path):
        session = resolve_session(directory, danmaku, summary)
        if session is None:
            continue
        result = merge_session(session, opts, config.container)
        if result.status == "merged":
            summary.record_output(result.output)
        elif result.status == "exists":
            summary.skipped.append(directory)
        else:
            summary.failed.append(directory)

    _log_summary(summary, time.monotonic() - began)
    if summary.outputs and config.open_output:
        _open_folder(summary.output_dirs[-1])
    return summary


def _default_cache_path() -> str:
    return os.path.join(os.path.expanduser("~"), "Videos", "bilibili")


def parse_config(argv: Optional[Sequence[str]] = None) -> Config:
    ap = argparse.ArgumentParser(
        description="Repair bilibili m4s cache fragments and merge them into playable files."
    )
    ap.add_argument(
        "-c",
        "--cache-path",
        default=os.getenv("M4SMERGE_CACHE_PATH") or _default_cache_path(),
        help="bilibili cache directory.",
    )
    ap.add_argument(
        "-f",
        "--ffmpeg",
        default=os.getenv("M4SMERGE_FFMPEG") or shutil.which("ffmpeg") or "",
        help="Path to the ffmpeg executable (defaults to the one on PATH).",
    )
    ap.add_argument(
        "-o",
        "--overwrite",
        action="store_true",
        help="Overwrite existing output files.",
    )
    ap.add_argument(
        "-a",
        "--no-danmaku",
        action="store_true",
        help="Do not download danmaku and convert it to ASS subtitles.",
    )
    ap.add_argument(
        "--danmaku-url",
        default=os.getenv("M4SMERGE_DANMAKU_URL", DANMAKU_URL),
        help="Danmaku URL template; {cid} is replaced by the directory name.",
    )
    ap.add_argument(
        "--container",
        choices=["mp4", "mkv"],
        default=DEFAULT_CONTAINER,
        help="Output container extension.",
    )
    ap.add_argument(
        "--no-open",
        action="store_true",
        help="Do not open the output folder when done.",
    )
    ap.add_argument(
        "--no-pause",
        action="store_true",
        help="Exit without waiting for Enter.",
    )
    ap.add_argument("--log-file", default=None, help="Also write the log to this file.")
    ap.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv).",
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = ap.parse_args(argv)

    return Config(
        cache_path=os.path.abspath(os.path.expanduser(args.cache_path)),
        ffmpeg_path=args.ffmpeg,
        overwrite=args.overwrite,
        danmaku=not args.no_danmaku,
        danmaku_url=args.danmaku_url,
        container=args.container,
        open_output=not args.no_open,
        pause=not args.no_pause,
        log_file=args.log_file,
        verbose=args.verbose,
    )


def _setup_logging(config: Config) -> Optional[logging.Handler]:
    level = (
        logging.WARNING
        if config.verbose == 0
        else (logging.INFO if config.verbose == 1 else logging.DEBUG)
    )
    logging.basicConfig(
        level=level, stream=sys.stderr, format="%(levelname)s: %(message)s"
    )
    if not config.log_file:
        return None
    handler = logging.FileHandler(config.log_file, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s: %(message)s"))
    logging.getLogger().addHandler(handler)
    return handler


def _close_log_file(handler: Optional[logging.Handler]) -> None:
    if handler is None:
        return
    logging.getLogger().removeHandler(handler)
    handler.close()


def wait_for_exit(pause: bool) -> None:
    if not pause:
        return
    print("press Enter to exit...", end="", flush=True)
    try:
        input()
    except EOFError:
        pass


def main(argv: Optional[Sequence[str]] = None) -> int:
    config = parse_config(argv)
    log_file = _setup_logging(config)

    code = 0
    if not config.ffmpeg_path:
        notify("ffmpeg not found; install it or pass --ffmpeg")
        code = 1
    else:
        try:
            run(config)
        except FileNotFoundError as exc:
            notify(f"cannot find the bilibili cache directory: {exc}")
            code = 1
        except (OutputDirectoryError, MuxerUnavailable) as exc:
            notify(str(exc))
            code = 1
        except OSError as exc:
            notify(f"cannot read the bilibili cache directory: {exc}")
            code = 1
        except Exception:
            logging.exception("unexpected failure")
            code = 1

    _close_log_file(log_file)
    wait_for_exit(config.pause)
    return code


if __name__ == "__main__":
    sys.exit(main())
