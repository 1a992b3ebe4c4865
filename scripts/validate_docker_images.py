#!/usr/bin/env python3
"""Validate Docker images referenced in docs/*.md(x).

Checks that each image exists on Docker Hub or GCR (gcr.io).

Rules:
- Settings come from defaults, then docker-images.yml (or --config), then flags.
- Images are checked one at a time with a short delay between requests.
- Exit 1 if any image is confirmed missing. Network errors only warn (exit 0).
"""
from __future__ import annotations
import argparse
import pathlib
import sys
import time
import typing as t

import httpx
import yaml  # type: ignore

from image_refs import collect_image_refs, find_doc_files, parse_image_ref

REPO_ROOT = pathlib.Path(__file__).resolve().parent.parent
DOCS_DIR = REPO_ROOT / "docs"
CONFIG_FILE = REPO_ROOT / "docker-images.yml"

DOCKER_HUB_API = "https://hub.docker.com/v2/repositories"
GCR_API = "https://gcr.io/v2"
GCR_MANIFEST_ACCEPT = "application/vnd.docker.distribution.manifest.v2+json"
GCR_OK_STATUSES = (200, 307)

MAX_LISTED_LOCATIONS = 3
RULE = "=" * 80


class Config(t.TypedDict):
    docs_dir: pathlib.Path
    timeout: float
    delay: float
    docker_hub_api: str
    gcr_api: str


class ValidationResult(t.TypedDict, total=False):
    image_ref: str
    exists: bool
    registry: str
    status_code: int
    error: str


def default_config() -> Config:
    return {
        "docs_dir": DOCS_DIR,
        "timeout": 10.0,
        "delay": 0.1,
        "docker_hub_api": DOCKER_HUB_API,
        "gcr_api": GCR_API,
    }


def load_config(path: pathlib.Path, base: Config | None = None) -> Config:
    """Overlay settings from a YAML file onto ``base``.

    A missing file leaves ``base`` untouched; a broken one is reported and ignored.
    """
    config = dict(base or default_config())
    if not path.is_file():
        return t.cast(Config, config)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        print(f"WARN: Failed to parse {path.name}: {e}")
        raw = {}
    if not isinstance(raw, dict):
        print(f"WARN: {path.name} must contain a mapping, ignoring it")
        raw = {}
    for key, value in raw.items():
        if key not in config:
            print(f"WARN: Unknown setting '{key}' in {path.name}")
            continue
        try:
            config[key] = _coerce_setting(key, value, path.parent)
        except (TypeError, ValueError):
            print(f"WARN: Invalid value for '{key}' in {path.name}")
    return t.cast(Config, config)


def _coerce_setting(key: str, value: t.Any, base_dir: pathlib.Path) -> t.Any:
    if key == "docs_dir":
        docs = pathlib.Path(value)
        return docs if docs.is_absolute() else (base_dir / docs)
    if key in ("timeout", "delay"):
        # YAML yes/no parse as bools
        if isinstance(value, bool):
            raise TypeError(key)
        return float(value)
    if not isinstance(value, str) or not value.strip():
        raise TypeError(key)
    return value.rstrip("/")


def check_docker_hub_image(client: httpx.Client, image_name: str, tag: str, api_base: str = DOCKER_HUB_API) -> ValidationResult:
    try:
        response = client.get(f"{api_base}/{image_name}/tags/{tag}")
    except (httpx.RequestError, httpx.InvalidURL) as e:
        return {"exists": False, "error": str(e) or type(e).__name__, "registry": "Docker Hub"}
    return {
        "exists": response.status_code == 200,
        "status_code": response.status_code,
        "registry": "Docker Hub",
    }


def check_gcr_image(client: httpx.Client, image_path: str, tag: str, api_base: str = GCR_API) -> ValidationResult:
    """Look up the manifest through the Docker Registry HTTP API V2.

    gcr.io answers some valid manifests with a 307, which counts as found.
    """
    try:
        response = client.get(
            f"{api_base}/{image_path}/manifests/{tag}",
            headers={"Accept": GCR_MANIFEST_ACCEPT},
        )
    except (httpx.RequestError, httpx.InvalidURL) as e:
        return {"exists": False, "error": str(e) or type(e).__name__, "registry": "GCR"}
    return {
        "exists": response.status_code in GCR_OK_STATUSES,
        "status_code": response.status_code,
        "registry": "GCR",
    }


def validate_image(client: httpx.Client, image_ref: str, config: Config) -> ValidationResult:
    parsed = parse_image_ref(image_ref)
    if parsed["kind"] == "gcr":
        result = check_gcr_image(client, parsed["image_path"], parsed["tag"], config["gcr_api"])
    else:
        result = check_docker_hub_image(client, parsed["image_name"], parsed["tag"], config["docker_hub_api"])
    result["image_ref"] = image_ref
    return result


def make_client(config: Config) -> httpx.Client:
    return httpx.Client(timeout=config["timeout"], follow_redirects=False)


def summarize(results: list[ValidationResult]) -> tuple[int, int, int]:
    """Count (valid, invalid, errored) results."""
    valid = sum(1 for r in results if r["exists"])
    errored = sum(1 for r in results if not r["exists"] and r.get("error"))
    return valid, len(results) - valid - errored, errored


def exit_code(results: list[ValidationResult]) -> int:
    _, invalid, _ = summarize(results)
    return 1 if invalid else 0


def print_inventory(images: list[str], locations: dict[str, list[str]]) -> None:
    print(RULE)
    print("\n📋 Docker Images Found:\n")
    for image in images:
        found_in = locations[image]
        print(f"\n• {image}")
        print(f"  Found in {len(found_in)} file(s):")
        for loc in found_in[:MAX_LISTED_LOCATIONS]:
            print(f"    - {loc}")
        if len(found_in) > MAX_LISTED_LOCATIONS:
            print(f"    ... and {len(found_in) - MAX_LISTED_LOCATIONS} more")


def check_images(
    client: httpx.Client,
    images: list[str],
    config: Config,
    sleep: t.Callable[[float], None] = time.sleep,
) -> list[ValidationResult]:
    results: list[ValidationResult] = []
    for i, image_ref in enumerate(images):
        if i:
            # crude rate limit for the public registries
            sleep(config["delay"])
        print(f"Checking {image_ref}... ", end="", flush=True)
        result = validate_image(client, image_ref, config)
        results.append(result)
        if result["exists"]:
            print("✅ EXISTS")
        elif result.get("error"):
            print(f"⚠️  ERROR: {result['error']}")
        else:
            print(f"❌ NOT FOUND ({result['status_code']})")
    return results


def print_report(results: list[ValidationResult], locations: dict[str, list[str]]) -> None:
    valid, invalid, errored = summarize(results)
    print("\n" + RULE)
    print("\n📊 SUMMARY:\n")
    print(f"Total images found: {len(results)}")
    print(f"✅ Valid images: {valid}")
    print(f"❌ Invalid images: {invalid}")
    print(f"⚠️  Errors: {errored}")

    if invalid:
        print("\n" + RULE)
        print("\n❌ INVALID IMAGES:\n")
        for r in results:
            if r["exists"] or r.get("error"):
                continue
            print(f"\n{r['image_ref']}")
            print(f"  Registry: {r['registry']}")
            print(f"  Status: {r['status_code']}")
            print("  Found in:")
            for loc in locations[r["image_ref"]]:
                print(f"    - {loc}")

    if errored:
        print("\n" + RULE)
        print("\n⚠️  IMAGES WITH VALIDATION ERRORS:\n")
        print("These images could not be validated due to network or API issues.")
        print("They may still exist, but verification failed.\n")
        for r in results:
            if r["exists"] or not r.get("error"):
                continue
            print(f"\n{r['image_ref']}")
            print(f"  Registry: {r['registry']}")
            print(f"  Error: {r['error']}")
            print("  Found in:")
            for loc in locations[r["image_ref"]]:
                print(f"    - {loc}")

    if invalid:
        print("\n⚠️  Some images could not be validated!")
    elif errored:
        print("\n⚠️  All images appear valid, but some had validation errors.")
        print("Please check the images with errors manually.")
    else:
        print("\n✅ All images validated successfully!")


def run(config: Config, client: httpx.Client, sleep: t.Callable[[float], None] = time.sleep) -> int:
    docs_dir = config["docs_dir"]
    print("🔍 Scanning MDX files for Docker images...\n")
    doc_files = find_doc_files(docs_dir)
    print(f"Found {len(doc_files)} MDX/MD files\n")

    locations = collect_image_refs(docs_dir, doc_files)
    images = sorted(locations)
    print(f"Found {len(images)} unique Docker images\n")
    if not images:
        print("Nothing to validate.")
        return 0

    print_inventory(images, locations)
    print("\n" + RULE)
    print("\n🔍 Validating images...\n")
    results = check_images(client, images, config, sleep=sleep)
    print_report(results, locations)
    return exit_code(results)


def parse_args(argv: list[str] | None = None) -> Config:
    parser = argparse.ArgumentParser(description="Check that Docker images referenced in the docs exist.")
    parser.add_argument("--config", type=pathlib.Path, help=f"YAML settings file (default: {CONFIG_FILE.name} if present)")
    parser.add_argument("--docs-dir", type=pathlib.Path, help="Documentation root to scan")
    parser.add_argument("--timeout", type=float, help="Per-request timeout in seconds")
    parser.add_argument("--delay", type=float, help="Pause between registry requests in seconds")
    parser.add_argument("--docker-hub-api", help="Docker Hub repositories API base URL")
    parser.add_argument("--gcr-api", help="GCR registry V2 API base URL")
    args = parser.parse_args(argv)

    if args.config is not None and not args.config.is_file():
        parser.error(f"config file not found: {args.config}")
    config = load_config(args.config or CONFIG_FILE)
    if args.docs_dir is not None:
        config["docs_dir"] = args.docs_dir
    if args.timeout is not None:
        config["timeout"] = args.timeout
    if args.delay is not None:
        config["delay"] = args.delay
    if args.docker_hub_api:
        config["docker_hub_api"] = args.docker_hub_api.rstrip("/")
    if args.gcr_api:
        config["gcr_api"] = args.gcr_api.rstrip("/")
    return config


def main(argv: list[str] | None = None) -> int:
    config = parse_args(argv)
    try:
        with make_client(config) as client:
            return run(config, client)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':  # pragma: no cover
    sys.exit(main())
