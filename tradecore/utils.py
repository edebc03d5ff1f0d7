"""
Utils - Persistencia JSON e logging
================================================================================
- save_json_atomic / load_json_safe: arquivos de resultado e do otimo salvo
  (o otimizador pode ler o historico enquanto outro processo grava)
- setup_logging: console + arquivo rotativo, usado pelos scripts
================================================================================
"""
import json
import logging
import os
import tempfile
import time
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

log = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'
FILE_HANDLER_NAME = 'strategy_tuner_file'


# =============================================================================
# JSON
# =============================================================================
def save_json_atomic(filepath: str, data: Any, indent: int = 2):
    """
    Grava JSON sem deixar arquivo parcial: escreve num temporario no mesmo
    diretorio e substitui o destino com os.replace.
    Valores nao serializaveis (datetime, numpy) viram str.
    """
    directory = os.path.dirname(os.path.abspath(filepath))
    os.makedirs(directory, exist_ok=True)

    tmp = tempfile.NamedTemporaryFile(
        'w', encoding='utf-8', dir=directory, suffix='.tmp', delete=False
    )
    try:
        with tmp:
            json.dump(data, tmp, indent=indent, ensure_ascii=False, default=str)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, filepath)
    except (OSError, TypeError, ValueError) as e:
        log.error(f"Falha gravando {filepath}: {e}")
        if os.path.exists(tmp.name):
            os.remove(tmp.name)
        raise


def load_json_safe(filepath: str, default: Any = None, retries: int = 3, delay: float = 0.1) -> Any:
    """
    Le JSON; arquivo ausente ou ilegivel retorna `default` ({} se None).
    JSON invalido e relido ate `retries` vezes (gravacao concorrente).
    """
    fallback = {} if default is None else default
    if not os.path.exists(filepath):
        return fallback

    attempt = 0
    while True:
        attempt += 1
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                return json.load(f)
        except OSError as e:
            log.error(f"Falha lendo {filepath}: {e}")
            return fallback
        except json.JSONDecodeError as e:
            if attempt >= retries:
                log.error(f"JSON invalido em {filepath}: {e}")
                return fallback
            time.sleep(delay)


# =============================================================================
# LOGGING
# =============================================================================
def setup_rotating_logger(
    name: str,
    log_file: str,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 5,
    level: int = logging.INFO
) -> logging.Logger:
    """
    Anexa um RotatingFileHandler ao logger `name` ('' = root).
    Chamadas repetidas nao duplicam o handler.

    Args:
        name: Nome do logger
        log_file: Arquivo de log (diretorio criado se preciso)
        max_bytes: Tamanho antes de rotacionar
        backup_count: Arquivos antigos mantidos
        level: Nivel minimo

    Returns:
        O logger
    """
    target = logging.getLogger(name)
    target.setLevel(level)

    existing = [h for h in target.handlers if h.get_name() == FILE_HANDLER_NAME]
    if existing:
        for handler in existing:
            handler.setLevel(level)
        return target

    directory = os.path.dirname(log_file)
    if directory:
        os.makedirs(directory, exist_ok=True)

    handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8')
    handler.set_name(FILE_HANDLER_NAME)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    target.addHandler(handler)
    return target


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Console + arquivo rotativo no root logger, a partir da secao 'logging'
    do Config. Argumentos explicitos tem prioridade.
    """
    from .config import Config

    section = Config.get_section('logging')
    level_name = str(level or section.get('level', 'INFO')).upper()
    numeric_level = logging.getLevelName(level_name)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    logging.basicConfig(level=numeric_level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)

    log_file = log_file or section.get('log_file')
    if not log_file:
        logging.getLogger().setLevel(numeric_level)
        return logging.getLogger()

    return setup_rotating_logger(
        '',
        log_file,
        max_bytes=section.get('max_bytes', 5 * 1024 * 1024),
        backup_count=section.get('backup_count', 5),
        level=numeric_level,
    )
