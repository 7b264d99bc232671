"""Parameter lookup via AWS SSM Parameter Store."""

from __future__ import annotations

import logging

from buildworker.errors import ConfigError

log = logging.getLogger("buildworker.cloud.secrets")


def fetch_secret(name: str, region: str, *, client=None) -> str:
    """Return the decrypted value of the SSM parameter `name`.

    Raises ConfigError if the parameter cannot be read.
    """
    if client is None:
        import boto3

        client = boto3.client("ssm", region_name=region)

    try:
        response = client.get_parameter(Name=name, WithDecryption=True)
        return response["Parameter"]["Value"]
    except Exception as exc:
        log.error("could not read parameter %s: %s", name, exc)
        raise ConfigError(f"parameter {name} unavailable: {exc}") from exc
