"""
Configuration constants for the takeout organizer.
"""

# --- File Type Definitions ---
# Includes the odd extensions Google Photos uses for motion photos
MEDIA_EXTS = {
    '.jpg', '.jpeg', '.png', '.heic', '.gif', '.webp', '.dng', '.nef',
    '.mp4', '.mov', '.m4v', '.mp', '.mv', '.mp~2', '.mp~3',
}
VIDEO_EXTS = {'.mp4', '.mov', '.m4v', '.mp', '.mv', '.mp~2', '.mp~3'}
STILL_EXTS = MEDIA_EXTS - VIDEO_EXTS
SIDECAR_EXT = '.json'

# Album-level metadata exported next to the photos, not a per-file sidecar
ALBUM_METADATA_NAME = 'metadata.json'

# --- Takeout Layout ---
TAKEOUT_WRAPPER_DIR = 'Google Photos'
UPLOAD_CONTAINER_PREFIX = 'Photos from'

# Folder used for the hash cache and pattern stores; never scanned
STATE_DIR_NAME = '.takeout_organizer'
HASH_CACHE_NAME = 'hash_cache.json'
DATE_PATTERNS_NAME = 'date_patterns.json'
DATE_EXCLUSIONS_NAME = 'date_exclusions.json'

# --- Sidecar Matching ---
LIVE_PHOTO_VIDEO_EXTS = {'.mp4', '.mov'}
LIVE_PHOTO_STILL_EXTS = ['.heic', '.jpg', '.jpeg', '.png']
MOTION_PHOTO_STILL_EXTS = ['.jpg', '.jpeg']
EDIT_SUFFIXES = ['-edited', '-collage', '-color_pop', '-photo_frame', '-overlayed']

# --- Hashing ---
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading

# --- Dates ---
MIN_PLAUSIBLE_YEAR = 1990
EMBEDDED_DATE_TAGS = ['DateTimeOriginal', 'CreateDate', 'MediaCreateDate', 'TrackCreateDate']
EXIFREAD_DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]
# pymediainfo General-track fields, most trustworthy first
MEDIAINFO_DATE_FIELDS = ['recorded_date', 'encoded_date', 'tagged_date']
UNKNOWN_GROUP_DISPLAY_LIMIT = 50
UNKNOWN_GROUP_EXAMPLES = 3
APPLY_CONFIRMATION = 'APPLY'

# --- Output ---
LIBRARY_FOLDER = 'Library'
ALBUMS_FOLDER = 'Albums'
UNTITLED_ALBUM = 'Untitled'
HASH_SUFFIX_LEN = 8
MAX_NUMERIC_SUFFIX = 9999

DEFAULT_WORKERS = 4
DEFAULT_EXIF_BATCH = 25

# --- External Metadata Tool ---
EXIFTOOL = 'exiftool'
EXIFTOOL_COMMON_ARGS = ['-overwrite_original', '-q', '-q', '-m']
EXIFTOOL_READY_MARKER = '{ready}'

WRITABLE_EXTS = {
    '.jpg', '.jpeg', '.png', '.heic', '.heif', '.mp4', '.mov', '.m4v', '.mp',
    '.gif', '.webp', '.dng', '.nef', '.mv', '.mp~2', '.mp~3',
}

# Extension -> the sniffed kind it implies
EXT_TO_KIND = {
    '.jpg': 'jpeg',
    '.jpeg': 'jpeg',
    '.png': 'png',
    '.heic': 'heic',
    '.heif': 'heic',
    '.webp': 'webp',
}
# Extensions whose header is checked before writing metadata
SNIFF_CHECKED_EXTS = {ext: kind for ext, kind in EXT_TO_KIND.items() if ext != '.webp'}
PREFERRED_EXT = {
    'jpeg': '.jpg',
    'png': '.png',
    'heic': '.heic',
    'webp': '.webp',
}
HEIF_BRANDS = {'heic', 'heix', 'heif', 'hevc', 'heim', 'heis'}
ORIGIN_LABEL_PREFIX = 'gphotos:'
