"""
Configuración de la base de datos y del crawler usando variables de entorno.
"""
import os
from dotenv import load_dotenv

# Cargar variables de entorno desde .env
load_dotenv()


def get_db_config():
    """
    Obtiene la configuración de la base de datos desde variables de entorno.

    Returns:
        dict: Diccionario con los parámetros de conexión a PostgreSQL
    """
    return {
        'host': os.getenv('DB_HOST', 'localhost'),
        'port': os.getenv('DB_PORT', '5432'),
        'database': os.getenv('DB_NAME', 'dogfood'),
        'user': os.getenv('DB_USER', 'postgres'),
        'password': os.getenv('DB_PASSWORD', '')
    }


def _env_float(name, default):
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return float(default)
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} debe ser numérico (valor: {value!r})")


def _env_int(name, default, minimum=None):
    value = os.getenv(name)
    if value is None or value.strip() == '':
        number = int(default)
    else:
        try:
            number = int(value)
        except ValueError:
            raise ValueError(f"{name} debe ser un entero (valor: {value!r})")
    if minimum is not None and number < minimum:
        raise ValueError(f"{name} debe ser >= {minimum} (valor: {number})")
    return number


def get_crawler_config():
    """
    Obtiene los límites y el ritmo del crawler desde variables de entorno.

    Returns:
        dict: Presupuesto de la ejecución, reintentos HTTP y tamaños de página

    Raises:
        ValueError: Si alguna variable no es numérica o está por debajo de su mínimo
    """
    return {
        'max_runtime': _env_float('CRAWLER_MAX_RUNTIME', 300),
        'safety_margin': _env_float('CRAWLER_SAFETY_MARGIN', 30),
        'max_products': _env_int('MAX_PRODUCTS_PER_RUN', 10, minimum=0),
        'record_delay': _env_float('CRAWLER_RECORD_DELAY', 1.0),
        'checkpoint_every': _env_int('CRAWLER_CHECKPOINT_EVERY', 5, minimum=1),
        'max_consecutive_failures': _env_int('CRAWLER_MAX_CONSECUTIVE_FAILURES', 3, minimum=1),
        'request_timeout': _env_float('CRAWLER_REQUEST_TIMEOUT', 30),
        'max_retries': _env_int('CRAWLER_MAX_RETRIES', 3, minimum=1),
        'opff_page_size': _env_int('OPFF_PAGE_SIZE', 20, minimum=1),
        'html_page_size': _env_int('HTML_PAGE_SIZE', 10, minimum=1),
    }
