"""
Módulo para manejar operaciones de base de datos PostgreSQL.

Hace de backend para CrawlStateStore, DeduplicationIndex y SubmissionSink.
Las funciones relanzan los errores de psycopg2 tras el rollback; quien
llama decide si son fatales.
"""
import logging
import os

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from config import get_db_config

logger = logging.getLogger(__name__)

# Variable global para la conexión
_connection = None


def get_connection():
    """
    Obtiene una conexión a la base de datos PostgreSQL.
    Si ya existe una conexión activa, la reutiliza.

    Returns:
        psycopg2.connection: Conexión a la base de datos

    Raises:
        psycopg2.OperationalError: Si no se puede conectar a la base de datos
    """
    global _connection

    if _connection is None or _connection.closed:
        config = get_db_config()
        try:
            _connection = psycopg2.connect(**config)
            logger.info("✓ Conexión a la base de datos establecida")
        except psycopg2.OperationalError as e:
            logger.error(f"✗ Error al conectar a la base de datos: {e}")
            logger.error(
                "Verifica que PostgreSQL esté ejecutándose, que la base de datos "
                "exista y que las credenciales del .env sean correctas"
            )
            raise

    return _connection


def close_connection():
    """
    Cierra la conexión a la base de datos.
    """
    global _connection

    if _connection and not _connection.closed:
        _connection.close()
        logger.info("✓ Conexión a la base de datos cerrada")
    _connection = None


def _rollback(conn):
    if conn and not conn.closed:
        conn.rollback()


def init_database():
    """
    Inicializa la base de datos ejecutando el script de esquema.
    Lee el archivo database_schema.sql y ejecuta las sentencias SQL.

    Returns:
        bool: True si el esquema se aplicó
    """
    conn = None
    try:
        conn = get_connection()
        cursor = conn.cursor()

        schema_path = os.path.join(os.path.dirname(__file__), 'database_schema.sql')
        with open(schema_path, 'r', encoding='utf-8') as f:
            schema_sql = f.read()

        cursor.execute(schema_sql)
        conn.commit()
        cursor.close()

        logger.info("✓ Base de datos inicializada correctamente")
        return True

    except FileNotFoundError:
        logger.error("✗ No se encontró el archivo database_schema.sql")
        return False
    except psycopg2.Error as e:
        logger.error(f"✗ Error al inicializar la base de datos: {e}")
        _rollback(conn)
        return False


def fetch_crawl_state(state_key):
    """
    Lee la fila de crawl_state.

    Returns:
        dict o None si todavía no hay estado guardado
    """
    conn = None
    try:
        conn = get_connection()
        cursor = conn.cursor(cursor_factory=RealDictCursor)
        cursor.execute(
            """
            SELECT current_source, per_source_cursor, last_seen_key,
                   total_processed, last_run_at, last_error
            FROM crawl_state
            WHERE state_key = %s
            """,
            (state_key,),
        )
        row = cursor.fetchone()
        conn.commit()
        cursor.close()
        return dict(row) if row else None
    except psycopg2.Error:
        _rollback(conn)
        raise


def upsert_crawl_state(state_key, record):
    """
    Inserta o actualiza el estado del crawl usando ON CONFLICT.

    Args:
        state_key (str): Clave fija del despliegue
        record (dict): Columnas de CrawlState.to_record()
    """
    conn = None
    try:
        conn = get_connection()
        cursor = conn.cursor()

        query = """
            INSERT INTO crawl_state (
                state_key, current_source, per_source_cursor, last_seen_key,
                total_processed, last_run_at, last_error, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (state_key)
            DO UPDATE SET
                current_source = EXCLUDED.current_source,
                per_source_cursor = EXCLUDED.per_source_cursor,
                last_seen_key = EXCLUDED.last_seen_key,
                total_processed = EXCLUDED.total_processed,
                last_run_at = COALESCE(EXCLUDED.last_run_at, crawl_state.last_run_at),
                last_error = EXCLUDED.last_error,
                updated_at = NOW()
        """

        cursor.execute(
            query,
            (
                state_key,
                record['current_source'],
                Json(record.get('per_source_cursor') or {}),
                Json(record.get('last_seen_key') or {}),
                record.get('total_processed', 0),
                record.get('last_run_at'),
                record.get('last_error'),
            ),
        )
        conn.commit()
        cursor.close()
    except psycopg2.Error:
        _rollback(conn)
        raise


def try_acquire_run_lock(key):
    """
    Intenta tomar el advisory lock de sesión asociado a la clave.

    El lock vive mientras la conexión siga abierta, así que una ejecución
    que muere lo libera sola.

    Returns:
        bool: True si se obtuvo el lock
    """
    conn = None
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT pg_try_advisory_lock(hashtext(%s))", (key,))
        acquired = cursor.fetchone()[0]
        conn.commit()
        cursor.close()
        return bool(acquired)
    except psycopg2.Error:
        _rollback(conn)
        raise


def release_run_lock(key):
    conn = None
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute("SELECT pg_advisory_unlock(hashtext(%s))", (key,))
        conn.commit()
        cursor.close()
    except psycopg2.Error:
        _rollback(conn)
        raise


def ean_exists(ean):
    """
    Comprueba si el EAN ya está en la cola de moderación (cualquier estado).

    Returns:
        bool: True si existe alguna submission con ese EAN
    """
    conn = None
    try:
        conn = get_connection()
        cursor = conn.cursor()
        cursor.execute(
            "SELECT 1 FROM food_submissions WHERE ean = %s LIMIT 1",
            (ean,),
        )
        exists = cursor.fetchone() is not None
        conn.commit()
        cursor.close()
        return exists
    except psycopg2.Error:
        _rollback(conn)
        raise


def insert_submission(record):
    """
    Inserta una submission en la cola de moderación.

    Args:
        record (dict): Columnas de Submission.to_record()

    Returns:
        int: ID de la submission insertada
    """
    conn = None
    try:
        conn = get_connection()
        cursor = conn.cursor()

        query = """
            INSERT INTO food_submissions (
                ean, brand, name, protein, fat, crude_fiber, raw_ash, moisture,
                additives, image_url, status, submitted_at, source_id, run_session_id
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
        """

        additives = record.get('additives')
        cursor.execute(
            query,
            (
                record['ean'],
                record['brand'],
                record['name'],
                record.get('protein'),
                record.get('fat'),
                record.get('crude_fiber'),
                record.get('raw_ash'),
                record.get('moisture'),
                Json(additives) if additives is not None else None,
                record.get('image_url'),
                record.get('status', 'PENDING'),
                record['submitted_at'],
                record['source_id'],
                record['run_session_id'],
            ),
        )
        submission_id = cursor.fetchone()[0]
        conn.commit()
        cursor.close()

        return submission_id
    except psycopg2.Error:
        _rollback(conn)
        raise


def recent_submissions(limit=10):
    """
    Últimas submissions, de la más reciente a la más antigua.

    Returns:
        list[dict]: Filas de food_submissions
    """
    conn = None
    try:
        conn = get_connection()
        cursor = conn.cursor(cursor_factory=RealDictCursor)
        cursor.execute(
            """
            SELECT id, ean, brand, name, status, submitted_at, source_id, run_session_id
            FROM food_submissions
            ORDER BY submitted_at DESC
            LIMIT %s
            """,
            (limit,),
        )
        rows = [dict(row) for row in cursor.fetchall()]
        conn.commit()
        cursor.close()
        return rows
    except psycopg2.Error:
        _rollback(conn)
        raise
