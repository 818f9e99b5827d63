#!/usr/bin/env python3
import argparse
import logging
import mimetypes
import os
import re
import sys
import tomllib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from threading import Condition, Lock
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union
from urllib.parse import urldefrag, urljoin, urlparse

import requests
import urllib3
import yaml
from bs4 import BeautifulSoup, FeatureNotFound
from bs4.element import Tag
from requests.adapters import HTTPAdapter
from urllib3.exceptions import InsecureRequestWarning
from urllib3.util.retry import Retry

# -------------------- Config --------------------

# An old UA tends to get the simplest markup a site can serve.
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows; U; Windows NT 6.1; "
    "chrome://navigator/locale/navigator.properties; rv:1.8.0.1) Gecko/20060126"
)

SUPPORTED_SCHEMES = {"http", "https", "ftp"}

URI_ATTRIBUTES = (
    "action",
    "background",
    "cite",
    "classid",
    "codebase",
    "data",
    "formaction",
    "href",
    "icon",
    "longdesc",
    "manifest",
    "poster",
    "profile",
    "src",
    "usemap",
)

NO_CONTENT_STATUSES = {204, 205}

RESERVED_FILENAME_CHARS_RE = re.compile(r'[/\\?%*:|"<>]')
SLASH_GROUP_RE = re.compile(r"/{2,}")
META_REFRESH_RE = re.compile(
    r"^(?P<delay>\s*[^;,]*[;,]\s*)"
    r"(?P<prefix>url\s*=\s*)?"
    r"(?P<quote>[\"']?)(?P<url>.*?)(?P=quote)\s*$",
    re.IGNORECASE | re.DOTALL,
)

# Extension lists for the usual web types, canonical extension first.
MIME_EXTENSIONS: Dict[str, List[str]] = {
    "text/html": ["html", "htm", "shtml"],
    "application/xhtml+xml": ["xhtml", "xht"],
    "text/css": ["css"],
    "text/javascript": ["js", "mjs"],
    "application/javascript": ["js", "mjs"],
    "application/json": ["json", "map"],
    "application/manifest+json": ["webmanifest"],
    "application/xml": ["xml", "xsl", "xsd", "rng"],
    "text/xml": ["xml"],
    "text/plain": ["txt", "text", "conf", "def", "list", "log", "in", "ini"],
    "text/csv": ["csv"],
    "application/pdf": ["pdf"],
    "application/zip": ["zip"],
    "image/png": ["png"],
    "image/jpeg": ["jpeg", "jpg", "jpe"],
    "image/gif": ["gif"],
    "image/webp": ["webp"],
    "image/avif": ["avif"],
    "image/bmp": ["bmp"],
    "image/svg+xml": ["svg", "svgz"],
    "image/x-icon": ["ico"],
    "image/vnd.microsoft.icon": ["ico"],
    "font/woff": ["woff"],
    "font/woff2": ["woff2"],
    "font/ttf": ["ttf"],
    "font/otf": ["otf"],
    "application/vnd.ms-fontobject": ["eot"],
    "audio/mpeg": ["mpga", "mp2", "mp2a", "mp3", "m2a", "m3a"],
    "audio/ogg": ["oga", "ogg", "spx", "opus"],
    "audio/wav": ["wav"],
    "video/mp4": ["mp4", "mp4v", "mpg4"],
    "video/webm": ["webm"],
    "video/ogg": ["ogv"],
    "video/x-matroska": ["mkv", "mk3d", "mks"],
    "video/x-flv": ["flv"],
    "application/x-shockwave-flash": ["swf"],
}

# -------------------- Settings --------------------


@dataclass
class Settings:
    site: str = ""
    output_directory: str = "."
    domains: List[str] = field(default_factory=list)

    # HTTP
    ignore_ssl_errors: bool = False
    user_agent: str = DEFAULT_USER_AGENT
    basic_auth_username: Optional[str] = None
    basic_auth_password: Optional[str] = None
    timeout: float = 30.0
    retries: int = 0

    # Crawl
    workers: int = 16
    dedupe: bool = True

    # Output
    sanitize_filenames: bool = os.name == "nt"

    verbose: bool = False


# -------------------- Errors --------------------


class MirrorError(Exception):
    pass


class TransportError(MirrorError):
    def __init__(self, requested_url: str, message: str):
        super().__init__(f"{requested_url}: {message}")
        self.requested_url = requested_url
        self.message = message


class FilesystemError(MirrorError):
    pass


class ConsistencyError(MirrorError):
    """Raised when a document's bookkeeping contradicts itself (a bug)."""


# -------------------- URL algebra --------------------


def collapse_slash_groups(url: str) -> str:
    """Collapse runs of '/' in the path part of ``url``.

    The scheme's '//' and anything from the first '?' or '#' on are kept
    as they are.
    """
    params_start = get_params_start_index(url)
    end = params_start if params_start > -1 else len(url)
    scheme_index = url.find("://")
    start = scheme_index + 4 if scheme_index > -1 else 1
    if start >= end:
        return url
    return url[:start] + SLASH_GROUP_RE.sub("/", url[start:end]) + url[end:]


def get_params_start_index(url: str) -> int:
    indexes = [i for i in (url.find("?"), url.find("#")) if i > -1]
    return min(indexes) if indexes else -1


def get_absolute_url(reference: str, base_url: str) -> str:
    reference = reference.strip()
    if not reference.startswith(("./", "../", "/")):
        scheme = urlparse(reference).scheme.lower()
        if scheme in SUPPORTED_SCHEMES:
            return collapse_slash_groups(reference)
    return collapse_slash_groups(urljoin(base_url, reference))


def host_of(url: str) -> str:
    netloc = urlparse(url).netloc
    return netloc.rpartition("@")[2].lower()


def _strip_port(host: str) -> str:
    if host.startswith("["):
        return host.split("]", 1)[0] + "]"
    return host.partition(":")[0]


def domain_list_contains(host: str, domains: Sequence[str]) -> bool:
    """Whether ``host`` is one of ``domains`` or a subdomain of one of them."""
    if not domains:
        return True
    host = host.lower().rstrip(".")
    for domain in domains:
        domain = domain.lower().strip().rstrip(".")
        if not domain:
            continue
        candidate = host if ":" in domain else _strip_port(host)
        if candidate == domain or candidate.endswith("." + domain):
            return True
    return False


# -------------------- Output layout --------------------


def extensions_for(mime_type: str) -> List[str]:
    mime_type = mime_type.strip().lower()
    if not mime_type or "/" not in mime_type:
        return []
    known = MIME_EXTENSIONS.get(mime_type)
    if known is not None:
        return list(known)
    exts: List[str] = []
    first = mimetypes.guess_extension(mime_type, strict=False)
    if first:
        exts.append(first.lstrip("."))
    for ext in mimetypes.guess_all_extensions(mime_type, strict=False):
        ext = ext.lstrip(".")
        if ext not in exts:
            exts.append(ext)
    return exts


def extensions_for_header(content_type: Optional[str]) -> List[str]:
    for part in (content_type or "").split(";"):
        exts = extensions_for(part)
        if exts:
            return exts
    return []


def sanitize_filename(name: str) -> str:
    return RESERVED_FILENAME_CHARS_RE.sub("_", name)


@dataclass(frozen=True)
class LocalPath:
    directory: str
    filename: str

    @property
    def relative_path(self) -> str:
        return f"{self.directory}/{self.filename}"


def get_paths(
    absolute_url: str, content_type: Optional[str] = "", *, sanitize: bool = False
) -> LocalPath:
    """Map a URL and its content type to where the resource is saved."""
    exts = extensions_for_header(content_type)

    if not absolute_url:
        filename = "index"
        if exts:
            filename += "." + exts[0]
        return LocalPath(".", filename)

    # Take out the scheme and the fragment.
    hash_index = absolute_url.find("#")
    scheme_index = absolute_url.find("://")
    start = scheme_index + 3 if scheme_index > -1 else 0
    end = hash_index if hash_index > start else len(absolute_url)
    url = absolute_url[start:end]

    ends_with_slash = url.endswith("/")
    is_html = bool(exts) and (
        any("htm" in ext for ext in exts)
        or absolute_url.endswith((".html", ".htm", ".xhtml"))
    )

    # The query tail joins the file name without its '?', which a browser
    # would read as the start of a query, and without adding levels.
    suffix = ""
    params_start = get_params_start_index(url)
    if params_start > -1:
        suffix = url[params_start + 1 :].replace("/", "_")
        url = url[:params_start]

    if ends_with_slash and is_html:
        directory = url[:-1]
        filename = "index.html"
    elif "/" not in url:
        directory = url
        filename = "index." + exts[0] if exts else "index"
    else:
        directory, _, filename = url.rpartition("/")
        if not filename:
            filename = "index"
        if exts and not any(filename.endswith("." + ext) for ext in exts):
            filename += "." + exts[0]

    filename += suffix

    if sanitize:
        directory = "/".join(sanitize_filename(seg) for seg in directory.split("/"))
        filename = sanitize_filename(filename)

    return LocalPath(directory, filename)


def get_local_relative_hyperlink(
    document_url: str,
    target_url: str,
    *,
    document_content_type: str = "",
    target_content_type: str = "",
    sanitize: bool = False,
) -> str:
    """Link from the saved copy of ``document_url`` to that of ``target_url``.

    The shared prefix never takes in the target's file name, so a target
    file named like one of the document's directories is reached through
    '../' instead of yielding an empty link.
    """
    source = get_paths(document_url, document_content_type, sanitize=sanitize)
    target = get_paths(target_url, target_content_type, sanitize=sanitize)
    if source == target:
        return "."

    source_segs = source.directory.split("/")
    target_segs = target.directory.split("/") + [target.filename]

    common = 0
    limit = min(len(source_segs), len(target_segs) - 1)
    while common < limit and source_segs[common] == target_segs[common]:
        common += 1

    ups = "../" * (len(source_segs) - common)
    return ups + "/".join(target_segs[common:])


class OutputWriter:
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def ensure_directory(self, directory: Path) -> None:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemError(f"couldn't make directory {directory}: {e}") from e

    def write_file(self, local_path: LocalPath, data: bytes) -> Path:
        directory = self.root / local_path.directory
        self.ensure_directory(directory)
        target = directory / local_path.filename
        try:
            target.write_bytes(data)
        except OSError as e:
            raise FilesystemError(f"couldn't write file {target}: {e}") from e
        return target


# -------------------- HTML utils --------------------


def bs4_parse(markup: Union[str, bytes]) -> BeautifulSoup:
    try:
        return BeautifulSoup(markup, "lxml")
    except FeatureNotFound:
        return BeautifulSoup(markup, "html.parser")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        try:
            return urljoin(fallback, tag["href"])
        except ValueError:
            logging.error("couldn't parse <base href=%r> on %s", tag["href"], fallback)
    return fallback


def serialize_html(soup: BeautifulSoup) -> bytes:
    return soup.encode("utf-8", formatter="html")


# -------------------- Document rewriter --------------------


class PendingCounter:
    """Countdown of the link-resolution units a document still waits for."""

    def __init__(self, count: int = 0):
        self._count = count
        self._lock = Lock()

    @property
    def value(self) -> int:
        with self._lock:
            return self._count

    def reset(self, count: int) -> None:
        with self._lock:
            self._count = count

    def count_down(self, n: int = 1) -> bool:
        """Subtract ``n``; True only for the call that lands exactly on zero."""
        with self._lock:
            if n > self._count:
                raise ConsistencyError(
                    f"pending counter would drop below zero ({self._count - n}), "
                    "this is a bug, please report it"
                )
            self._count -= n
            return self._count == 0


FinalUrlCallback = Callable[[str, str], None]
FetchFn = Callable[[str, Optional[FinalUrlCallback]], None]


class DocumentRewriter:
    """Rewrites the links of one parsed document to point at local copies.

    Every element contributes one unit per name in ``URI_ATTRIBUTES``. Units
    are resolved right away (no attribute, <base>, self link, out of scope)
    or once the fetch of their target reports the target's final URL. The
    document is serialized and handed to ``on_complete`` when the last unit
    resolves.
    """

    def __init__(
        self,
        soup: BeautifulSoup,
        canonical_url: str,
        fetch: FetchFn,
        on_complete: Callable[[bytes], None],
        *,
        domains: Sequence[str] = (),
        sanitize: bool = False,
        content_type: str = "",
    ):
        self.soup = soup
        self.canonical_url = canonical_url
        self.base_url = effective_base_url(soup, canonical_url)
        self.domains = list(domains)
        self.sanitize = sanitize
        self.content_type = content_type
        self._fetch = fetch
        self._on_complete = on_complete
        self._counter = PendingCounter()
        self._lock = Lock()

    @property
    def pending(self) -> int:
        return self._counter.value

    def start(self) -> None:
        elements = self.soup.find_all(True)
        total = len(elements) * len(URI_ATTRIBUTES)
        self._counter.reset(total)
        if total == 0:
            self._finish()
            return

        for element in elements:
            if element.name == "base":
                self._resolved(len(URI_ATTRIBUTES))
            elif (
                element.name == "meta"
                and str(element.get("http-equiv") or "").lower() == "refresh"
            ):
                self._resolve_meta_refresh(element)
            else:
                for attribute in URI_ATTRIBUTES:
                    self._resolve_attribute(element, attribute)

    def relative_link(self, final_url: str, content_type: str = "") -> str:
        return get_local_relative_hyperlink(
            self.canonical_url,
            final_url,
            document_content_type=self.content_type,
            target_content_type=content_type,
            sanitize=self.sanitize,
        )

    def _target_for(self, reference: str) -> Optional[Tuple[str, str]]:
        """Absolute URL (without fragment) and fragment to fetch, or None."""
        try:
            absolute = get_absolute_url(reference, self.base_url)
            url, fragment = urldefrag(absolute)
            parsed = urlparse(url)
        except ValueError as e:
            logging.error("couldn't parse %r on %s: %s", reference, self.canonical_url, e)
            return None

        if parsed.scheme.lower() not in SUPPORTED_SCHEMES:
            logging.debug("not fetchable: %s", absolute)
            return None
        # Link to self, nothing to do.
        if url == urldefrag(self.canonical_url)[0]:
            return None
        if not domain_list_contains(host_of(url), self.domains):
            logging.debug("out of scope: %s", url)
            return None
        return url, fragment

    def _resolve_attribute(self, element: Tag, attribute: str) -> None:
        value = element.get(attribute)
        if isinstance(value, list):
            value = " ".join(value)
        if not value:
            self._resolved()
            return
        target = self._target_for(value)
        if target is None:
            self._resolved()
            return
        url, fragment = target
        self._fetch(url, partial(self._rewrite_attribute, element, attribute, fragment))

    def _rewrite_attribute(
        self,
        element: Tag,
        attribute: str,
        fragment: str,
        final_url: str,
        content_type: str = "",
    ) -> None:
        link = self.relative_link(final_url, content_type)
        if fragment:
            link = f"{link}#{fragment}"
        with self._lock:
            element[attribute] = link
        self._resolved()

    def _resolve_meta_refresh(self, element: Tag) -> None:
        units = len(URI_ATTRIBUTES)
        match = META_REFRESH_RE.match(str(element.get("content") or ""))
        if not match or not match.group("url"):
            self._resolved(units)
            return
        target = self._target_for(match.group("url"))
        if target is None:
            self._resolved(units)
            return
        url, fragment = target
        self._fetch(url, partial(self._rewrite_meta_refresh, element, match, fragment))

    def _rewrite_meta_refresh(
        self,
        element: Tag,
        match: "re.Match[str]",
        fragment: str,
        final_url: str,
        content_type: str = "",
    ) -> None:
        link = self.relative_link(final_url, content_type)
        if fragment:
            link = f"{link}#{fragment}"
        quote = match.group("quote")
        content = f"{match.group('delay')}{match.group('prefix') or ''}{quote}{link}{quote}"
        with self._lock:
            element["content"] = content
        self._resolved(len(URI_ATTRIBUTES))

    def _resolved(self, n: int = 1) -> None:
        if self._counter.count_down(n):
            self._finish()

    def _finish(self) -> None:
        with self._lock:
            data = serialize_html(self.soup)
        self._on_complete(data)


# -------------------- Transport --------------------


@dataclass(frozen=True)
class FetchResponse:
    requested_url: str
    final_url: str
    status: int
    content_type: str
    body: bytes


class Transport:
    def get(self, url: str) -> FetchResponse:
        raise NotImplementedError

    def close(self) -> None:
        pass


def build_session(settings: Settings) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=max(0, settings.retries),
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    pool_size = max(10, settings.workers)
    adapter = HTTPAdapter(
        max_retries=retry, pool_connections=pool_size, pool_maxsize=pool_size
    )
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers["User-Agent"] = settings.user_agent
    if settings.basic_auth_username or settings.basic_auth_password:
        s.auth = (settings.basic_auth_username or "", settings.basic_auth_password or "")
    if settings.ignore_ssl_errors:
        s.verify = False
        urllib3.disable_warnings(InsecureRequestWarning)
    return s


class RequestsTransport(Transport):
    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.session = session if session is not None else build_session(settings)
        self.timeout = settings.timeout

    def get(self, url: str) -> FetchResponse:
        try:
            r = self.session.get(url, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as e:
            raise TransportError(url, str(e)) from e
        return FetchResponse(
            requested_url=url,
            final_url=str(r.url),
            status=r.status_code,
            content_type=r.headers.get("Content-Type", ""),
            body=r.content,
        )

    def close(self) -> None:
        self.session.close()


# -------------------- Crawl orchestrator --------------------


class UrlRegistry:
    """At-most-once bookkeeping of fetched URLs and their final URLs."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._final: Dict[str, Tuple[str, str]] = {}
        self._waiters: Dict[str, List[FinalUrlCallback]] = {}

    @staticmethod
    def key(url: str) -> str:
        return urldefrag(url)[0]

    def claim(self, url: str, callback: Optional[FinalUrlCallback] = None) -> bool:
        """True if the caller has to fetch ``url`` itself.

        Otherwise ``callback`` runs once the final URL is known, which may
        be right now.
        """
        key = self.key(url)
        with self._lock:
            resolved = self._final.get(key)
            if resolved is None:
                waiters = self._waiters.get(key)
                if waiters is None:
                    self._waiters[key] = [callback] if callback else []
                    return True
                if callback:
                    waiters.append(callback)
                return False
        if callback:
            callback(*resolved)
        return False

    def resolve(self, url: str, final_url: str, content_type: str) -> bool:
        """Record the final URL of a claimed fetch and notify its waiters.

        Returns False when ``final_url`` is already owned by another fetch.
        """
        key = self.key(url)
        final_key = self.key(final_url)
        owns_final = True
        with self._lock:
            self._final[key] = (final_url, content_type)
            waiters = self._waiters.pop(key, [])
            if final_key != key:
                if final_key in self._final or final_key in self._waiters:
                    owns_final = False
                else:
                    self._final[final_key] = (final_url, content_type)
        errors: List[Exception] = []
        for callback in waiters:
            try:
                callback(final_url, content_type)
            except Exception as e:
                errors.append(e)
        if errors:
            raise errors[0]
        return owns_final


@dataclass
class CrawlReport:
    pages: int = 0
    assets: int = 0
    failed: int = 0
    skipped_duplicates: int = 0
    consistency_errors: int = 0


class Crawler:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[Transport] = None,
        writer: Optional[OutputWriter] = None,
    ):
        self.settings = settings
        self.transport = transport if transport is not None else RequestsTransport(settings)
        self.writer = writer if writer is not None else OutputWriter(settings.output_directory)
        self.registry = UrlRegistry() if settings.dedupe else None
        self.report = CrawlReport()
        self._pool = ThreadPoolExecutor(
            max_workers=max(1, settings.workers), thread_name_prefix="mirror"
        )
        self._lock = Lock()
        self._idle = Condition(self._lock)
        self._in_flight = 0
        self._closed = False
        self._fatal: Optional[FilesystemError] = None

    def fetch(self, url: str, on_final_url: Optional[FinalUrlCallback] = None) -> None:
        """Schedule ``url`` for download; ``on_final_url`` gets its final URL."""
        callback = self._guarded(on_final_url)
        if self.registry is not None and not self.registry.claim(url, callback):
            logging.debug("already queued: %s", url)
            self._count("skipped_duplicates")
            return
        with self._lock:
            if self._closed or self._fatal is not None:
                return
            self._in_flight += 1
            self._pool.submit(self._work, url, callback)

    def run(self, seed_url: str) -> CrawlReport:
        self.fetch(seed_url)
        with self._idle:
            while self._in_flight and self._fatal is None:
                self._idle.wait()
            self._closed = True
            fatal = self._fatal
        self._pool.shutdown(wait=True, cancel_futures=fatal is not None)
        self.transport.close()
        if fatal is not None:
            raise fatal
        return self.report

    def _count(self, name: str) -> None:
        with self._lock:
            setattr(self.report, name, getattr(self.report, name) + 1)

    def _guarded(self, callback: Optional[FinalUrlCallback]) -> Optional[FinalUrlCallback]:
        if callback is None:
            return None

        def guarded(final_url: str, content_type: str) -> None:
            try:
                callback(final_url, content_type)
            except ConsistencyError as e:
                logging.error("%s", e)
                self._count("consistency_errors")

        return guarded

    def _work(self, url: str, on_final_url: Optional[FinalUrlCallback]) -> None:
        try:
            self._download(url, on_final_url)
        except FilesystemError as e:
            logging.error("%s", e)
            with self._lock:
                if self._fatal is None:
                    self._fatal = e
        except ConsistencyError as e:
            logging.error("%s", e)
            self._count("consistency_errors")
        except Exception:
            logging.exception("unexpected error while mirroring %s", url)
            self._count("failed")
        finally:
            with self._idle:
                self._in_flight -= 1
                self._idle.notify_all()

    def _announce(
        self,
        url: str,
        final_url: str,
        content_type: str,
        on_final_url: Optional[FinalUrlCallback],
    ) -> bool:
        if self.registry is not None:
            return self.registry.resolve(url, final_url, content_type)
        if on_final_url is not None:
            on_final_url(final_url, content_type)
        return True

    def _download(self, url: str, on_final_url: Optional[FinalUrlCallback]) -> None:
        logging.info("downloading %s", url)
        try:
            response = self.transport.get(url)
        except TransportError as e:
            logging.warning("error downloading %s: %s", e.requested_url, e.message)
            self._count("failed")
            self._announce(url, url, "", on_final_url)
            return
        except Exception:
            logging.exception("unexpected error while downloading %s", url)
            self._count("failed")
            self._announce(url, url, "", on_final_url)
            return

        if not self._announce(url, response.final_url, response.content_type, on_final_url):
            logging.debug("already mirrored: %s (from %s)", response.final_url, url)
            self._count("skipped_duplicates")
            return

        # No content and reset content, nothing to save.
        if response.status in NO_CONTENT_STATUSES:
            return

        if not response.content_type:
            logging.debug("missing content-type for %s, saving as-is", response.final_url)

        if "html" in response.content_type.lower():
            self._rewrite_document(response)
        else:
            self._save(response.final_url, response.content_type, response.body)
            self._count("assets")

    def _rewrite_document(self, response: FetchResponse) -> None:
        rewriter = DocumentRewriter(
            bs4_parse(response.body),
            response.final_url,
            self.fetch,
            partial(self._document_done, response.final_url, response.content_type),
            domains=self.settings.domains,
            sanitize=self.settings.sanitize_filenames,
            content_type=response.content_type,
        )
        rewriter.start()

    def _document_done(self, url: str, content_type: str, data: bytes) -> None:
        self._save(url, content_type, data)
        self._count("pages")

    def _save(self, url: str, content_type: str, data: bytes) -> Path:
        local_path = get_paths(url, content_type, sanitize=self.settings.sanitize_filenames)
        target = self.writer.write_file(local_path, data)
        logging.info("downloaded %s -> %s", url, target)
        return target


# -------------------- Config loader --------------------

CONFIG_SECTIONS = ("crawl", "http", "auth", "output", "general")


def load_config_file(path: str) -> Dict[str, object]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Mirror a website to disk with links rewritten for offline viewing.",
    )
    p.add_argument("--config", type=str, default=None, help="path to config.toml|.yaml")

    p.add_argument(
        "--site",
        "-s",
        dest="site",
        default=None,
        help="initial site to download, without protocol (http/https)",
    )
    p.add_argument(
        "--ignoreSslErrors",
        "-i",
        dest="ignore_ssl_errors",
        action="store_true",
        help="ignore invalid or expired certificates",
    )
    p.add_argument(
        "--domains",
        "-d",
        dest="domains",
        action="extend",
        nargs="+",
        default=[],
        help="only download from these domains and their subdomains",
    )
    p.add_argument(
        "--outputDirectory",
        "-o",
        dest="output_directory",
        default=".",
        help="where to write; one subdirectory per domain is created",
    )
    p.add_argument(
        "--userAgent",
        "-u",
        dest="user_agent",
        default=DEFAULT_USER_AGENT,
        help="User-Agent header to crawl with",
    )
    p.add_argument(
        "--basicAuthUsername", "--user", dest="basic_auth_username", default=None
    )
    p.add_argument(
        "--basicAuthPassword", "--pass", dest="basic_auth_password", default=None
    )

    p.add_argument("--workers", type=int, default=16, help="concurrent downloads")
    p.add_argument("--timeout", type=float, default=30.0, help="request timeout seconds")
    p.add_argument("--retries", type=int, default=0, help="retries per request")
    p.add_argument(
        "--refetch",
        action="store_true",
        help="fetch a URL every time it is referenced (never ends on link cycles)",
    )
    p.add_argument(
        "--sanitize-filenames",
        dest="sanitize_filenames",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="replace characters Windows forbids in file names (default: on Windows)",
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
        for g in CONFIG_SECTIONS:
            if isinstance(cfg.get(g), dict):
                flat.update(cfg[g])
        parser.set_defaults(**flat)
    args = parser.parse_args(argv)
    if not args.site:
        parser.error("the following arguments are required: --site/-s")
    if "://" in args.site:
        parser.error("--site must not include the protocol")
    return args


def settings_from_args(args: argparse.Namespace) -> Settings:
    sanitize = args.sanitize_filenames
    return Settings(
        site=args.site.strip("/"),
        output_directory=args.output_directory,
        domains=[d for d in (args.domains or []) if d],
        ignore_ssl_errors=args.ignore_ssl_errors,
        user_agent=args.user_agent,
        basic_auth_username=args.basic_auth_username,
        basic_auth_password=args.basic_auth_password,
        timeout=max(0.1, args.timeout),
        retries=max(0, args.retries),
        workers=max(1, args.workers),
        dedupe=not args.refetch,
        sanitize_filenames=(os.name == "nt") if sanitize is None else bool(sanitize),
        verbose=args.verbose,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = settings_from_args(args)

    logging.basicConfig(
        level=logging.DEBUG if settings.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    crawler = Crawler(settings)
    try:
        report = crawler.run(f"http://{settings.site}/")
    except FilesystemError as e:
        logging.error("aborting, output is not writable: %s", e)
        return 1

    logging.info(
        "done: %d pages, %d other files, %d failed, %d duplicate references",
        report.pages,
        report.assets,
        report.failed,
        report.skipped_duplicates,
    )
    if report.consistency_errors:
        logging.error("%d internal consistency errors", report.consistency_errors)
        return 3
    return 0


if __name__ == "__main__":
    sys.exit(main())
