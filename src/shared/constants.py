from enum import Enum

# Базовый размер тайла Web Mercator (пикселей)
TILE_SIZE = 256

# Максимальная широта проекции Web Mercator (градусы)
MERCATOR_MAX_LAT_DEG = 85.05112878
# Ограничение sin(lat) для формулы Меркатора
MERCATOR_MAX_SIN = 0.9999

WORLD_LNG_SPAN_DEG = 360.0
WORLD_LNG_HALF_SPAN_DEG = 180.0
WORLD_LAT_MAX_DEG = 90.0

# Эпсилон для правой/нижней границы, чтобы край точно на границе тайла
# не захватывал соседний тайл
XY_EPSILON = 1e-9

# Расширение файлов тайлов в локальном хранилище
TILE_FILE_EXT = 'jpg'

# Подкаталог с тайлами внутри каталога данных приложения
TILES_SUBDIR = 'tiles'

# Имя файла базы офлайн-областей
OFFLINE_AREAS_DB_NAME = 'offline_areas.sqlite'

# Углы области сжимаются к центру на этот коэффициент при подборе имени
AREA_NAME_SENSITIVITY = 0.5

# Имя области, если геокодер не ответил
UNNAMED_AREA_NAME = 'Unnamed area'


class TileSourceType(str, Enum):
    MOG_COLLECTION = 'MOG_COLLECTION'
    TILED_WEB_MAP = 'TILED_WEB_MAP'


class OfflineAreaState(str, Enum):
    PENDING = 'PENDING'
    DOWNLOADING = 'DOWNLOADING'
    DOWNLOADED = 'DOWNLOADED'
    FAILED = 'FAILED'


# --- MOG (Cloud-Optimized GeoTIFF on the slippy-map grid) ---

# Общий мировой файл покрывает зумы 0..7
MOG_WORLD_MIN_ZOOM = 0
MOG_WORLD_MAX_ZOOM = 7
MOG_WORLD_PATH = 'world.tif'

# Региональные файлы {x}/{y}.tif на зуме 8 покрывают зумы 8..14
MOG_REGION_MIN_ZOOM = 8
MOG_REGION_MAX_ZOOM = 14
MOG_REGION_PATH = '{x}/{y}.tif'

# Первый range-запрос заголовка (байт)
HEADER_FETCH_BYTES = 64 * 1024
# Предел роста запроса заголовка (байт)
HEADER_MAX_BYTES = 8 * 1024 * 1024
# Сколько индексов источников держать в памяти (LRU)
INDEX_CACHE_MAX_ENTRIES = 256
# Сколько помнить, что источник ответил 404 (секунды)
INDEX_MISS_TTL_S = 3600.0

# Допустимый «перебор» между соседними тайлами при слиянии диапазонов (байт)
MAX_OVER_FETCH_PER_TILE = 1024
# Максимальный размер одного объединённого запроса (байт)
MAX_REQUEST_BYTES = 2 * 1024 * 1024

# TIFF
TIFF_MAGIC_CLASSIC = 42
TIFF_MAGIC_BIG = 43
TIFF_TAG_NEW_SUBFILE_TYPE = 254
TIFF_TAG_IMAGE_WIDTH = 256
TIFF_TAG_IMAGE_LENGTH = 257
TIFF_TAG_TILE_WIDTH = 322
TIFF_TAG_TILE_LENGTH = 323
TIFF_TAG_TILE_OFFSETS = 324
TIFF_TAG_TILE_BYTE_COUNTS = 325
TIFF_TAG_JPEG_TABLES = 347
# Бит маски прозрачности в NewSubfileType
TIFF_SUBFILE_MASK_BIT = 0x4

# JPEG маркеры
JPEG_SOI = b'\xff\xd8'
JPEG_EOI = b'\xff\xd9'

# --- HTTP ---

HTTP_OK = 200
HTTP_PARTIAL_CONTENT = 206
HTTP_NOT_FOUND = 404

# Таймауты HTTP по умолчанию (секунды)
HTTP_TIMEOUT_TOTAL = 120.0
HTTP_TIMEOUT_CONNECT = 15.0
HTTP_TIMEOUT_SOCK_READ = 30.0

# Размер порции чтения тела ответа (байт)
HTTP_CHUNK_SIZE = 64 * 1024

# Кэширование HTTP-ответов заголовков (SQLite)
HTTP_CACHE_ENABLED = True
HTTP_CACHE_DIR = '.cache/http'
HTTP_CACHE_EXPIRE_HOURS = 168

USER_AGENT = 'offline-tile-cache/0.1'

# --- Геокодирование ---

NOMINATIM_REVERSE_URL = 'https://nominatim.openstreetmap.org/reverse'
# Детализация ответа Nominatim (10 ~ город)
NOMINATIM_ZOOM = 10
GEOCODER_TIMEOUT_S = 10.0
