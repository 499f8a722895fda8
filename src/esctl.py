#!/usr/bin/env python3
"""
CLI tool for the Elasticsearch operator.

Validates ElasticsearchCluster manifests offline and inspects a running
operator through its API.
"""

import json
import sys

import click
import requests
import yaml
from tabulate import tabulate

from models import DecodeError, ElasticsearchCluster
from validation import ClusterSpecError, verify_elasticsearch_cluster

API_BASE_URL = "http://localhost:8080"


def load_manifests(filename: str) -> list:
    """Load every document in a YAML or JSON file."""
    with open(filename, "r") as f:
        if filename.endswith(".json"):
            data = json.load(f)
            return data if isinstance(data, list) else [data]
        return [doc for doc in yaml.safe_load_all(f) if doc is not None]


def check_manifest(manifest) -> tuple:
    """Return (name, namespace, error) for one manifest; error is None if valid."""
    if not isinstance(manifest, dict):
        return "<unknown>", "", "manifest must be a mapping"
    metadata = manifest.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    name = metadata.get("name", "<unknown>")
    namespace = metadata.get("namespace", "")
    try:
        cluster = ElasticsearchCluster.from_dict(manifest)
        verify_elasticsearch_cluster(cluster)
    except (DecodeError, ClusterSpecError) as e:
        return name, namespace, str(e)
    return name, namespace, None


@click.group()
def cli():
    """Elasticsearch operator CLI"""
    pass


@cli.command()
@click.argument("filenames", nargs=-1, required=True, type=click.Path(exists=True))
def validate(filenames):
    """Validate ElasticsearchCluster manifests from YAML/JSON files"""
    rows = []
    failed = False
    for filename in filenames:
        try:
            manifests = load_manifests(filename)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            click.echo(f"Error: cannot parse {filename}: {e}", err=True)
            failed = True
            continue

        for manifest in manifests:
            name, namespace, error = check_manifest(manifest)
            failed = failed or error is not None
            rows.append([name, namespace, "no" if error else "yes", error or ""])

    if rows:
        click.echo(tabulate(rows, headers=["NAME", "NAMESPACE", "VALID", "ERROR"]))
    if failed:
        sys.exit(1)


@cli.command()
@click.option("--url", default=API_BASE_URL, show_default=True, help="Operator API URL")
@click.option("--output", "-o", type=click.Choice(["table", "json"]), default="table")
def status(url, output):
    """Show the status of a running operator"""
    try:
        response = requests.get(f"{url.rstrip('/')}/status", timeout=10)
        response.raise_for_status()
        data = response.json()
    except requests.exceptions.RequestException as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if output == "json":
        click.echo(json.dumps(data, indent=2))
        return

    queue = data["queue"]
    click.echo(
        f"Running: {data['running']}  Workers: {data['workers']}  "
        f"Queued: {queue['queued']}  Processing: {queue['processing']}  "
        f"Waiting: {queue['waiting']}"
    )
    click.echo()
    rows = [
        [cache["kind"], "yes" if cache["synced"] else "no", cache["objects"]]
        for cache in data["caches"]
    ]
    click.echo(tabulate(rows, headers=["KIND", "SYNCED", "OBJECTS"]))


if __name__ == "__main__":
    cli()
