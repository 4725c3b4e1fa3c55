"""
Constantes globais do coletor da Chrome Web Store.

Este arquivo centraliza constantes que são usadas em múltiplos módulos.
Constantes específicas de cada módulo devem ficar em seus próprios arquivos.
"""

# Versão do sistema
VERSION = "1.0.0"

# Endpoints da Chrome Web Store
STORE_BASE_URL = "https://chromewebstore.google.com"
DETAIL_URL_TEMPLATE = STORE_BASE_URL + "/detail/{extension_id}"
SEARCH_URL_TEMPLATE = STORE_BASE_URL + "/search/{query}"
POPULAR_URL = STORE_BASE_URL + "/category/extensions"

# Paginação de discovery por categoria
MAX_CATEGORY_PAGES = 10

# Categorias conhecidas da loja (ordem usada na rotação do scheduler)
CATEGORIES = [
    "productivity",
    "social-communication",
    "developer-tools",
    "photo",
    "shopping",
    "accessibility",
    "news-weather",
    "fun",
    "sports",
    "education",
    "lifestyle",
    "entertainment",
    "business",
    "tools",
    "games",
]

# Palavras-chave para discovery por busca
SEARCH_KEYWORDS = [
    "adblocker",
    "password manager",
    "vpn",
    "screenshot",
    "youtube",
    "gmail",
    "translator",
    "calendar",
    "notes",
    "bookmark",
    "developer",
    "seo",
    "social media",
    "cryptocurrency",
    "proxy",
    "weather",
    "news",
    "shopping",
    "productivity",
    "video downloader",
]

# Faixas de usuários para classificação de prioridade
HIGH_PRIORITY_MIN_USERS = 1_000_000
MEDIUM_PRIORITY_MIN_USERS = 100_000

# Extensão nova acima deste número de usuários dispara discovery de relacionadas
RELATED_DISCOVERY_MIN_USERS = 100_000

# Quantas extensões populares entram na discovery diária de relacionadas
RELATED_DISCOVERY_TOP_N = 20
RELATED_DISCOVERY_HOUR = 2  # 2h da manhã

# Descoberta inicial ao iniciar o scheduler
INITIAL_DISCOVERY_CATEGORIES = 5
INITIAL_DISCOVERY_KEYWORDS = 10

# Falhas NOT_FOUND consecutivas antes de marcar a extensão como removida
REMOVED_AFTER_NOT_FOUND = 3

# Histórico de snapshots mantido por extensão
MAX_SNAPSHOTS_PER_EXTENSION = 100
