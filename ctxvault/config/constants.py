"""Hard-coded layout constants not meant to be user-configurable."""

CONTROL_DIR_NAME = ".ctxvault"
TRACKED_ROOT_NAME = "domains"
GLOBAL_DOMAIN_NAME = "_global"
IGNORE_FILE_NAME = ".ctxvaultignore"

CONFIG_FILE_NAME = "config.json"
INDEX_FILE_NAME = "index.json"
HEAD_FILE_NAME = "HEAD"
BRANCH_DESCRIPTIONS_FILE_NAME = "descriptions.json"

SNAPSHOT_FILE_NAME = "snapshot.tar.gz"
MANIFEST_FILE_NAME = "manifest.json"
COMMIT_LOG_SUFFIX = ".jsonl"

HEAD_REF_PREFIX = "ref: refs/heads/"

# Shortest commit-hash prefix accepted by lookups
MIN_HASH_PREFIX_LENGTH = 7

# Linear token heuristic: one token per four characters
CHARS_PER_TOKEN = 4

MERGE_AUTHOR_MODEL = "ctxvault-merge"
