"""
clawguard/core/classifier.py
─────────────────────────────
Risk Classifier — maps one activity record to a severity tier with evidence.

Every tool name resolves to a category; each category has ordered rule
tables of ``(pattern, tier, evidence)``. All matching rules contribute
evidence, the highest tier decides the level:

  critical  — immediate security concern (privilege escalation, disk wipes,
              pipe-to-shell, keychain / password-manager extraction)
  high      — significant concern (cloud CLI mutation, persistence, media
              capture, listeners, sensitive files / sites, outbound sends)
  medium    — notable (downloads, installs, clipboard, databases)
  low       — nothing matched

Category heuristics (non-TLS URL, write outside the trusted root, browser
automation, message actions) only apply when no higher tier already fired
for that record.

classify() is pure and total: no I/O, no state, never raises.
"""

from __future__ import annotations

import os
import pathlib
import re

from clawguard.core.record import ActivityRecord, coerce

LOW, MEDIUM, HIGH, CRITICAL = "low", "medium", "high", "critical"
SEVERITY_RANK = {LOW: 1, MEDIUM: 2, HIGH: 3, CRITICAL: 4}

# ── Categories ───────────────────────────────────────────────────────────────

SHELL, FILE, NETWORK, BROWSER = "shell", "file", "network", "browser"
MESSAGE, SYSTEM, MEMORY, OTHER = "message", "system", "memory", "other"

CATEGORY_BY_TOOL: dict[str, str] = {
    "exec":             SHELL,
    "process":          SHELL,
    "read":             FILE,
    "write":            FILE,
    "edit":             FILE,
    "web_fetch":        NETWORK,
    "web_search":       NETWORK,
    "browser":          BROWSER,
    "message":          MESSAGE,
    "tts":              MESSAGE,
    "cron":             SYSTEM,
    "gateway":          SYSTEM,
    "sessions_spawn":   SYSTEM,
    "sessions_send":    SYSTEM,
    "sessions_list":    SYSTEM,
    "sessions_history": SYSTEM,
    "session_status":   SYSTEM,
    "agents_list":      SYSTEM,
    "nodes":            SYSTEM,
    "canvas":           SYSTEM,
    "memory_search":    MEMORY,
    "memory_get":       MEMORY,
}

WRITE_TOOLS = frozenset({"write", "edit"})

# ── Shell command rules ──────────────────────────────────────────────────────

SHELL_RULES: list[tuple[str, str, str]] = [
    # (pattern, tier, evidence)

    # Privilege escalation / disk destruction
    (r'\bsudo\s+',                                   CRITICAL, "Privileged command execution"),
    (r'\brm\s+(-rf?|--recursive)\s+[/~]',            CRITICAL, "Recursive deletion of system/home paths"),
    (r'\bdd\s+if=.*of=/dev/',                        CRITICAL, "Direct disk write (potential disk wipe)"),
    (r'\bmkfs\b',                                    CRITICAL, "Filesystem creation (destructive)"),
    (r'>\s*/dev/sd[a-z]',                            CRITICAL, "Direct write to disk device"),

    # Remote code execution via pipe
    (r'\bcurl\s+.*\|\s*(ba)?sh',                     CRITICAL, "Remote code execution via pipe to shell"),
    (r'\bwget\s+.*\|\s*(ba)?sh',                     CRITICAL, "Remote code execution via pipe to shell"),

    # Credential stores
    (r'\bsecurity\s+find-(generic|internet)-password', CRITICAL, "Keychain password extraction"),
    (r'\bsecurity\s+dump-keychain',                  CRITICAL, "Full keychain dump"),
    (r'\bop\s+(read|get|item)',                      CRITICAL, "1Password credential access"),
    (r'\bbw\s+(get|list)\s+(password|item)',         CRITICAL, "Bitwarden credential access"),

    # Destructive commands
    (r'\brm\s+-rf?\b',                               HIGH, "Recursive file deletion"),
    (r'\bchmod\s+777\b',                             HIGH, "World-writable permissions"),
    (r'\beval\b',                                    HIGH, "Dynamic code evaluation"),
    (r'\bkillall\b',                                 HIGH, "Mass process termination"),

    # Email & external communication
    (r'\bgog\s+gmail\s+send\b',                      HIGH, "Sending email via Gmail"),
    (r'\bhimalaya\s+(send|write|reply|forward)\b',   HIGH, "Sending email via Himalaya"),
    (r'\bwacli\s+send\b',                            HIGH, "Sending WhatsApp message"),
    (r'\bimsg\s+send\b',                             HIGH, "Sending iMessage/SMS"),
    (r'\bbird\s+(post|tweet|reply)\b',               HIGH, "Posting to Twitter/X"),

    # Cloud CLI mutation
    (r'\baws\s+(s3|ec2|iam|lambda|rds)\b',           HIGH, "AWS cloud operations"),
    (r'\bgcloud\s+',                                 HIGH, "Google Cloud operations"),
    (r'\baz\s+(vm|storage|keyvault|ad)\b',           HIGH, "Azure cloud operations"),
    (r'\bterraform\s+(apply|destroy)\b',             HIGH, "Infrastructure modification"),
    (r'\bkubectl\s+(delete|apply|exec)\b',           HIGH, "Kubernetes cluster operations"),

    # Git history rewrites
    (r'\bgit\s+push\s+.*--force\b',                  HIGH, "Force push (can overwrite history)"),
    (r'\bgit\s+push\s+origin\s+(main|master)\b',     HIGH, "Pushing to main branch"),

    # Camera, microphone, screen
    (r'\bimagesnap\b',                               HIGH, "Camera capture"),
    (r'\bffmpeg\s+.*-f\s+avfoundation',              HIGH, "Audio/video recording"),
    (r'\bscreencapture\b',                           HIGH, "Screen capture"),
    (r'\bafrecord\b',                                HIGH, "Audio recording"),

    # System control
    (r'\breboot\b',                                  HIGH, "System reboot"),
    (r'\bshutdown\b',                                HIGH, "System shutdown"),
    (r'\bsystemctl\s+(stop|disable|mask)\b',         HIGH, "Disabling system services"),
    (r'\blaunchctl\s+(unload|remove)\b',             HIGH, "Removing launch agents"),

    # Persistence
    (r'\blaunchctl\s+load\b',                        HIGH, "Loading launch agent (persistence)"),
    (r'\bcrontab\b',                                 HIGH, "Modifying cron jobs (persistence)"),
    (r'>\s*~/Library/LaunchAgents/',                 HIGH, "Creating launch agent (persistence)"),

    # Credentials in commands
    (r'\bexport\s+\w*(_API_KEY|_SECRET|_TOKEN|_PASSWORD)=', HIGH, "Exporting credentials to environment"),
    (r'\becho\s+.*\b(password|secret|token|api.?key)\b.*>', HIGH, "Writing credentials to file"),

    # Network listeners
    (r'\bnc\s+-l',                                   HIGH, "Opening network listener"),
    (r'\bnetcat\s+-l',                               HIGH, "Opening network listener"),
    (r'\bsocat\b.*LISTEN',                           HIGH, "Opening network listener"),

    # Docker with elevated access
    (r'\bdocker\s+run\s+.*--privileged',             HIGH, "Privileged Docker container"),
    (r'\bdocker\s+run\s+.*-v\s+/:',                  HIGH, "Docker mounting host root"),
    (r'\bdocker\s+exec\s+.*/bin/(ba)?sh',            HIGH, "Docker container shell access"),

    # Network tools
    (r'\bcurl\s+(-O|--output)\b',                    MEDIUM, "Downloading file"),
    (r'\bwget\b',                                    MEDIUM, "Downloading file"),
    (r'\bssh\s+\w+@',                                MEDIUM, "SSH connection"),
    (r'\bscp\b',                                     MEDIUM, "Secure copy"),
    (r'\brsync\b',                                   MEDIUM, "Remote sync"),

    # Permissions / ownership
    (r'\bchmod\b',                                   MEDIUM, "Changing file permissions"),
    (r'\bchown\b',                                   MEDIUM, "Changing file ownership"),

    # Package installation
    (r'\bpip\s+install\b',                           MEDIUM, "Python package installation"),
    (r'\bnpm\s+install\s+-g\b',                      MEDIUM, "Global npm package installation"),
    (r'\bbrew\s+install\b',                          MEDIUM, "Homebrew package installation"),

    # Git
    (r'\bgit\s+push\b',                              MEDIUM, "Git push"),
    (r'\bgit\s+clone\b',                             MEDIUM, "Git clone"),

    # Clipboard
    (r'\bpbpaste\b',                                 MEDIUM, "Reading clipboard"),
    (r'\bpbcopy\b',                                  MEDIUM, "Writing to clipboard"),

    # Process manipulation
    (r'\bkill\s+-9\b',                               MEDIUM, "Force killing process"),
    (r'\bpkill\b',                                   MEDIUM, "Pattern-based process kill"),

    # Containers / databases / crypto tooling
    (r'\bdocker\s+(run|build|pull)\b',               MEDIUM, "Docker operations"),
    (r'\bsqlite3\b',                                 MEDIUM, "SQLite database access"),
    (r'\bpsql\b',                                    MEDIUM, "PostgreSQL access"),
    (r'\bmysql\b',                                   MEDIUM, "MySQL access"),
    (r'\bopenssl\b',                                 MEDIUM, "OpenSSL operations"),
    (r'\bbase64\b',                                  MEDIUM, "Base64 encoding/decoding"),
    (r'\bgpg\b',                                     MEDIUM, "GPG operations"),
]

# ── File path rules ──────────────────────────────────────────────────────────

SENSITIVE_PATH_RULES: list[tuple[str, str, str]] = [
    # SSH & crypto
    (r'\.ssh/',                   HIGH, "Sensitive file: SSH keys/config"),
    (r'\.gnupg/',                 HIGH, "Sensitive file: GPG keys"),
    (r'id_rsa',                   HIGH, "Sensitive file: RSA private key"),
    (r'id_ed25519',               HIGH, "Sensitive file: ED25519 private key"),
    (r'\.pem$',                   HIGH, "Sensitive file: PEM certificate/key"),
    (r'\.key$',                   HIGH, "Sensitive file: Private key file"),
    (r'\.p12$',                   HIGH, "Sensitive file: PKCS12 keystore"),
    (r'\.pfx$',                   HIGH, "Sensitive file: PFX certificate"),
    # Cloud credentials
    (r'\.aws/',                   HIGH, "Sensitive file: AWS credentials"),
    (r'\.azure/',                 HIGH, "Sensitive file: Azure credentials"),
    (r'\.kube/',                  HIGH, "Sensitive file: Kubernetes config"),
    (r'\.docker/config\.json',    HIGH, "Sensitive file: Docker credentials"),
    (r'gcloud/credentials',       HIGH, "Sensitive file: Google Cloud credentials"),
    # Password managers & keychains
    (r'1password',                HIGH, "Sensitive file: 1Password data"),
    (r'lastpass',                 HIGH, "Sensitive file: LastPass data"),
    (r'bitwarden',                HIGH, "Sensitive file: Bitwarden data"),
    (r'\.password-store/',        HIGH, "Sensitive file: pass password store"),
    (r'keychain',                 HIGH, "Sensitive file: Keychain file"),
    # Environment & config with secrets
    (r'\.env$',                   HIGH, "Sensitive file: Environment file"),
    (r'\.env\.[a-z]+$',           HIGH, "Sensitive file: Environment file"),
    (r'\.netrc$',                 HIGH, "Sensitive file: Netrc credentials"),
    (r'\.npmrc$',                 HIGH, "Sensitive file: NPM config (may contain tokens)"),
    (r'\.pypirc$',                HIGH, "Sensitive file: PyPI credentials"),
    # Generic
    (r'password',                 HIGH, "Sensitive file: Password-related file"),
    (r'secret',                   HIGH, "Sensitive file: Secret-related file"),
    (r'credential',               HIGH, "Sensitive file: Credential file"),
    (r'token',                    HIGH, "Sensitive file: Token file"),
    (r'api[_-]?key',              HIGH, "Sensitive file: API key file"),
    # System files
    (r'/etc/passwd',              HIGH, "Sensitive file: System passwd file"),
    (r'/etc/shadow',              HIGH, "Sensitive file: System shadow file"),
    (r'/etc/sudoers',             HIGH, "Sensitive file: Sudoers file"),
]

SYSTEM_PATH_RULES: list[tuple[str, str, str]] = [
    (r'^/etc/',           HIGH, "System path modification: System configuration"),
    (r'^/usr/',           HIGH, "System path modification: System binaries"),
    (r'^/bin/',           HIGH, "System path modification: Essential binaries"),
    (r'^/sbin/',          HIGH, "System path modification: System binaries"),
    (r'^/var/',           HIGH, "System path modification: Variable data"),
    (r'^/System/',        HIGH, "System path modification: macOS System"),
    (r'^/Library/',       HIGH, "System path modification: macOS Library"),
    (r'^/Applications/',  HIGH, "System path modification: Applications folder"),
]

FILE_CONTENT_RULES: list[tuple[str, str, str]] = [
    (r'(_API_KEY|_SECRET|_TOKEN|_PASSWORD)\s*[=:]', HIGH, "Writing credentials to file"),
    (r'-----BEGIN (RSA |EC |OPENSSH )?PRIVATE KEY-----', HIGH, "Writing private key to file"),
]

LARGE_WRITE_BYTES = 10_000

# ── URL rules ────────────────────────────────────────────────────────────────

SENSITIVE_URL_RULES: list[tuple[str, str, str]] = [
    (r'banking|bank\.',              HIGH, "Banking website"),
    (r'paypal\.com',                 HIGH, "PayPal"),
    (r'stripe\.com',                 HIGH, "Stripe"),
    (r'accounts\.google\.com',       HIGH, "Google Account"),
    (r'login\.|signin\.|auth\.',     HIGH, "Authentication page"),
    (r'oauth',                       HIGH, "OAuth flow"),
    (r'portal\.azure\.com',          HIGH, "Azure Portal"),
    (r'console\.aws\.amazon\.com',   HIGH, "AWS Console"),
    (r'github\.com/settings',        HIGH, "GitHub Settings"),
    (r'icloud\.com',                 HIGH, "iCloud"),
]

IP_LITERAL_URL_RULES: list[tuple[str, str, str]] = [
    (r'^https?://\d+\.\d+\.\d+\.\d+', HIGH, "Direct IP address access"),
    (r'^https?://\[[0-9a-f:]+\]',     HIGH, "Direct IP address access"),
]

# ── Message rules ────────────────────────────────────────────────────────────

MESSAGE_BODY_RULES: list[tuple[str, str, str]] = [
    (r'sk-[a-zA-Z0-9]{20,}',                 HIGH, "Message contains API-key-like text"),
    (r'-----BEGIN (RSA |EC |OPENSSH )?PRIVATE KEY-----', HIGH, "Message contains a private key"),
    (r'(?i)(password|passwd|api[_-]?key|token|secret)\s*[:=]\s*\S+', HIGH, "Message contains credential assignment"),
]

MESSAGE_ACTION_RULES: list[tuple[str, str, str]] = [
    (r'^broadcast$', HIGH, "Broadcast message"),
]

# ── System tool action rules ─────────────────────────────────────────────────
# tool -> (action rules, fallback (tier, evidence) applied when no rule fired)

SYSTEM_ACTION_RULES: dict[str, tuple[list[tuple[str, str, str]], tuple[str, str] | None]] = {
    "gateway": (
        [(r'^(config\.apply|restart|update\.run)$', HIGH, "Gateway modification: {action}")],
        (MEDIUM, "Gateway: {action}"),
    ),
    "cron": (
        [(r'^(add|update)$', HIGH, "Scheduled task modification")],
        (MEDIUM, "Cron: {action}"),
    ),
    "sessions_spawn": ([], (MEDIUM, "Spawning sub-agent")),
    "nodes": (
        [(r'^(camera_snap|camera_clip|screen_record)$', HIGH, "Node capture: {action}")],
        None,
    ),
}


def _compile(rules: list[tuple[str, str, str]]) -> list[tuple[re.Pattern, str, str]]:
    return [(re.compile(pattern, re.IGNORECASE), tier, evidence) for pattern, tier, evidence in rules]


_SHELL = _compile(SHELL_RULES)
_SENSITIVE_PATHS = _compile(SENSITIVE_PATH_RULES)
_SYSTEM_PATHS = [(re.compile(p), t, e) for p, t, e in SYSTEM_PATH_RULES]   # case matters
_FILE_CONTENT = _compile(FILE_CONTENT_RULES)
_SENSITIVE_URLS = _compile(SENSITIVE_URL_RULES)
_IP_LITERAL_URLS = _compile(IP_LITERAL_URL_RULES)
_MESSAGE_BODY = [(re.compile(p), t, e) for p, t, e in MESSAGE_BODY_RULES]
_MESSAGE_ACTIONS = _compile(MESSAGE_ACTION_RULES)
_SYSTEM_ACTIONS = {
    tool: (_compile(rules), fallback)
    for tool, (rules, fallback) in SYSTEM_ACTION_RULES.items()
}


# ── Evaluation ───────────────────────────────────────────────────────────────

def categorize(tool) -> str:
    """Category for a tool name; case-insensitive, unknown tools are ``other``."""
    if not isinstance(tool, str):
        return OTHER
    return CATEGORY_BY_TOOL.get(tool.strip().lower(), OTHER)


def _evaluate(rules, value, hits: list, prefix: str = "", **fmt) -> None:
    """Append ``(tier, evidence)`` for every rule matching ``value``."""
    if not isinstance(value, str) or not value:
        return
    for pattern, tier, evidence in rules:
        if pattern.search(value):
            hits.append((tier, prefix + (evidence.format(**fmt) if fmt else evidence)))


def _top(hits: list) -> str:
    return max((t for t, _ in hits), key=SEVERITY_RANK.__getitem__, default=LOW)


def _outside_root(path: str, trusted_root: str) -> bool:
    expanded = os.path.expanduser(path)
    if not os.path.isabs(expanded):
        return False
    root = pathlib.PurePath(os.path.normpath(os.path.expanduser(trusted_root)))
    target = pathlib.PurePath(os.path.normpath(expanded))
    return target != root and root not in target.parents


def _shell(record: ActivityRecord, hits: list, trusted_root: str) -> None:
    _evaluate(_SHELL, record.arg("command", "cmd"), hits)


def _file(record: ActivityRecord, hits: list, trusted_root: str) -> None:
    path = record.arg("path", "file_path")
    _evaluate(_SENSITIVE_PATHS, path, hits)

    if record.tool_key in WRITE_TOOLS:
        content = record.arg("content", "new_string", "newText")
        _evaluate(_SYSTEM_PATHS, path, hits)
        _evaluate(_FILE_CONTENT, content, hits)

        if _top(hits) == LOW and len(content) > LARGE_WRITE_BYTES:
            hits.append((MEDIUM, f"Large file write: {len(content)} bytes"))
        if _top(hits) == LOW and path and trusted_root and _outside_root(path, trusted_root):
            hits.append((MEDIUM, "File write outside trusted root"))


def _network(record: ActivityRecord, hits: list, trusted_root: str) -> None:
    url = record.arg("url")
    _evaluate(_SENSITIVE_URLS, url, hits, prefix="Sensitive site: ")
    _evaluate(_IP_LITERAL_URLS, url, hits)
    if _top(hits) == LOW and url.lower().startswith("http://"):
        hits.append((MEDIUM, "Non-HTTPS URL"))


def _browser(record: ActivityRecord, hits: list, trusted_root: str) -> None:
    url = record.arg("url", "targetUrl")
    _evaluate(_SENSITIVE_URLS, url, hits, prefix="Browser accessing: ")
    _evaluate(_IP_LITERAL_URLS, url, hits, prefix="Browser accessing: ")
    if _top(hits) == LOW:
        hits.append((MEDIUM, "Browser automation"))


def _message(record: ActivityRecord, hits: list, trusted_root: str) -> None:
    action = record.arg("action")
    target = record.arg("target", "to")
    _evaluate(_MESSAGE_BODY, record.arg("message", "text", "content"), hits)
    _evaluate(_MESSAGE_ACTIONS, action, hits)
    if action == "send" and target and _top(hits) != CRITICAL:
        hits.append((HIGH, f"Outbound message to: {target}"))
    if _top(hits) == LOW and action:
        hits.append((MEDIUM, f"Message action: {action}"))


def _system(record: ActivityRecord, hits: list, trusted_root: str) -> None:
    entry = _SYSTEM_ACTIONS.get(record.tool_key)
    if entry is None:
        return
    rules, fallback = entry
    action = record.arg("action")
    _evaluate(rules, action, hits, action=action)
    if fallback is not None and _top(hits) == LOW:
        tier, evidence = fallback
        hits.append((tier, evidence.format(action=action)))


_CATEGORY_EVALUATORS = {
    SHELL:   _shell,
    FILE:    _file,
    NETWORK: _network,
    BROWSER: _browser,
    MESSAGE: _message,
    SYSTEM:  _system,
}


def risk_score(level: str) -> int:
    return SEVERITY_RANK.get(level, 0)


def classify(record: ActivityRecord | dict, trusted_root: str | None = None) -> dict:
    """
    Classify one activity record.

    Args:
        record:       ActivityRecord (or plain dict with ``tool``/``arguments``).
        trusted_root: Directory writes may land in without escalation.
                      Defaults to the user's home directory.

    Returns:
        ``{"level", "category", "flags", "score"}``. Flags are prefixed with
        the tier that produced them and grouped highest tier first.
    """
    record = coerce(record)
    if trusted_root is None:
        trusted_root = os.path.expanduser("~")

    category = categorize(record.tool)
    hits: list[tuple[str, str]] = []

    evaluator = _CATEGORY_EVALUATORS.get(category)
    if evaluator is not None:
        evaluator(record, hits, trusted_root)

    level = _top(hits)
    flags: list[str] = []
    for tier, evidence in sorted(hits, key=lambda h: -SEVERITY_RANK[h[0]]):
        flag = f"{tier.upper()}: {evidence}"
        if flag not in flags:
            flags.append(flag)

    return {
        "level":    level,
        "category": category,
        "flags":    flags,
        "score":    risk_score(level),
    }


def highest(levels) -> str:
    """Highest of a collection of levels; ``low`` when empty."""
    return max(levels, key=lambda lv: SEVERITY_RANK.get(lv, 0), default=LOW)
