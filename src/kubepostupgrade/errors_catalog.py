"""Actionable error catalog for kube-postupgrade."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "certificate_unreadable": {
        "what": "Couldn't load the certificate file {path}: {reason}",
        "next": "Check that the file exists and is a PEM-encoded certificate.",
    },
    "certificate_empty": {
        "what": "No certificate data found in {path}.",
        "next": "Restore the certificate from a backup or regenerate it.",
    },
    "backup_dir_failed": {
        "what": "Failed to create backup directory {path}: {reason}",
        "next": "Remove a stale `expired` directory or fix permissions on the certificate directory.",
    },
    "self_hosting_unavailable": {
        "what": "No self-hosted control plane converter is configured.",
        "next": "Disable the `SelfHosting` feature gate or run with a converter installed.",
    },
    "addon_manifest_missing": {
        "what": "Add-on manifest not found: {path}",
        "next": "Set `addon_manifests_dir` to a directory containing the {addon} manifest.",
    },
    "ca_missing": {
        "what": "Cluster CA not found in {path}.",
        "next": "Make sure `ca.crt` and `ca.key` exist in the certificate directory.",
    },
    "post_upgrade_failed": {
        "what": "{count} post-upgrade task(s) failed.",
        "next": "Fix the reported problems and run the command again; every step is safe to re-run.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    """Render catalog entry ``code`` as "<what happened> Suggested action: <next step>"."""
    try:
        entry = _ERROR_MESSAGES[code]
    except KeyError:
        raise KeyError(f"Unknown error catalog key: {code}") from None
    return "{} Suggested action: {}".format(entry["what"].format(**kwargs), entry["next"].format(**kwargs))
