"""
clawguard.core.predicates
~~~~~~~~~~~~~~~~~~~~~~~~~~
Path and command predicates shared by the sequence detector and the
classifier. Every predicate accepts ``None`` or a non-string and answers
False rather than raising.
"""

from __future__ import annotations

import re

# ── Paths ────────────────────────────────────────────────────────────────────

_CREDENTIAL_PATH = re.compile(
    r'(\.env|\.ssh|\.aws|\.gnupg|'
    r'password|secret|credential|token|'
    r'keychain|id_rsa|\.pem$|\.key$|'
    r'1password|bitwarden|lastpass)',
    re.IGNORECASE,
)

_SSH_KEY_PATH = re.compile(
    r'(\.(ssh|gnupg)/(id_|authorized_keys|known_hosts|config)|'
    r'id_(rsa|ed25519|ecdsa|dsa))',
    re.IGNORECASE,
)

_CONFIG_FILE = re.compile(r'(\.(env|json|ya?ml|toml|ini|conf|config)$|config)', re.IGNORECASE)

_PERSISTENCE_PATH = re.compile(
    r'(LaunchAgents|LaunchDaemons|cron\.d|systemd|autostart|init\.d)',
    re.IGNORECASE,
)

# ── Commands ─────────────────────────────────────────────────────────────────

_NETWORK_COMMAND = re.compile(r'\b(curl|wget|nc|netcat|ssh|scp|rsync)\b', re.IGNORECASE)
_SUDO_COMMAND = re.compile(r'\bsudo\b', re.IGNORECASE)
_DESTRUCTIVE_COMMAND = re.compile(r'(\brm\s+-rf\b|\bchmod\s+777\b|\bdd\s+if=|\bmkfs\b)', re.IGNORECASE)
_SSH_CONNECT = re.compile(r'\bssh\s+\w+@', re.IGNORECASE)
_GIT_CLONE = re.compile(r'\bgit\s+clone\b', re.IGNORECASE)
_PACKAGE_INSTALL = re.compile(r'\b(npm\s+install|pip\s+install|yarn\s+install|pnpm\s+install)\b', re.IGNORECASE)
_DOWNLOAD_COMMAND = re.compile(r'(\bcurl\s+(-O|--output|-o)\b|\bwget\b|\baria2c\b)', re.IGNORECASE)
_EXECUTE_COMMAND = re.compile(r'(\b(bash|sh|zsh|python|node|ruby|perl)\s|\bchmod\s+\+x\s|\./)', re.IGNORECASE)
_PASSWORD_MANAGER = re.compile(
    r'\b(op\s+(read|get|item)|bw\s+(get|list)|'
    r'security\s+find-(generic|internet)-password|pass\s+show)\b',
    re.IGNORECASE,
)
_PERSISTENCE_COMMAND = re.compile(
    r'(\bcrontab\b|\blaunchctl\s+load\b|\bsystemctl\s+(enable|start)\b)',
    re.IGNORECASE,
)
_MEDIA_CAPTURE = re.compile(r'\b(imagesnap|screencapture|ffmpeg.*avfoundation|afrecord)\b', re.IGNORECASE)
_KEYCHAIN_EXTRACT = re.compile(
    r'\bsecurity\s+(find-generic-password|find-internet-password|dump-keychain)\b',
    re.IGNORECASE,
)

# ── Content ──────────────────────────────────────────────────────────────────

# Long opaque tokens and key=value secrets; used on outbound message bodies.
_CREDENTIAL_TEXT = [
    re.compile(r'sk-[a-zA-Z0-9]{20,}'),
    re.compile(r'[a-zA-Z0-9]{40,}'),
    re.compile(r'password\s*[:=]\s*\S+', re.IGNORECASE),
    re.compile(r'api[_-]?key\s*[:=]\s*\S+', re.IGNORECASE),
    re.compile(r'token\s*[:=]\s*\S+', re.IGNORECASE),
    re.compile(r'secret\s*[:=]\s*\S+', re.IGNORECASE),
]


def _test(pattern: re.Pattern, value) -> bool:
    return isinstance(value, str) and bool(value) and pattern.search(value) is not None


def is_credential_path(path) -> bool:
    return _test(_CREDENTIAL_PATH, path)


def is_ssh_key_path(path) -> bool:
    return _test(_SSH_KEY_PATH, path)


def is_config_file(path) -> bool:
    return _test(_CONFIG_FILE, path)


def is_persistence_path(path) -> bool:
    return _test(_PERSISTENCE_PATH, path)


def is_network_command(cmd) -> bool:
    return _test(_NETWORK_COMMAND, cmd)


def is_sudo_command(cmd) -> bool:
    return _test(_SUDO_COMMAND, cmd)


def is_destructive_command(cmd) -> bool:
    return _test(_DESTRUCTIVE_COMMAND, cmd)


def is_privileged_command(cmd) -> bool:
    return is_sudo_command(cmd) or is_destructive_command(cmd)


def is_ssh_connect(cmd) -> bool:
    return _test(_SSH_CONNECT, cmd)


def is_git_clone(cmd) -> bool:
    return _test(_GIT_CLONE, cmd)


def is_package_install(cmd) -> bool:
    return _test(_PACKAGE_INSTALL, cmd)


def is_download_command(cmd) -> bool:
    return _test(_DOWNLOAD_COMMAND, cmd)


def is_execute_command(cmd) -> bool:
    return _test(_EXECUTE_COMMAND, cmd)


def is_password_manager_command(cmd) -> bool:
    return _test(_PASSWORD_MANAGER, cmd)


def is_persistence_command(cmd) -> bool:
    return _test(_PERSISTENCE_COMMAND, cmd)


def is_media_capture(cmd) -> bool:
    return _test(_MEDIA_CAPTURE, cmd)


def is_keychain_extraction(cmd) -> bool:
    return _test(_KEYCHAIN_EXTRACT, cmd)


def contains_credentials(text) -> bool:
    """True when ``text`` carries something shaped like a key, token or password."""
    if not isinstance(text, str) or not text:
        return False
    return any(p.search(text) for p in _CREDENTIAL_TEXT)
