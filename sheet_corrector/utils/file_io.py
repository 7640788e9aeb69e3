import json
import pandas as pd
from pathlib import Path
from typing import Any, Dict, List

from .logger import app_logger

DEFAULT_CONFIG_PATH = Path("config/app_config.json")


class FileHandler:
    """Reading the config and repositories, writing summary tables."""

    @staticmethod
    def load_json(file_path: Path) -> Dict[str, Any]:
        file_path = Path(file_path)
        if not file_path.exists():
            app_logger.error(f"File not found: {file_path}")
            raise FileNotFoundError(f"File not found: {file_path}")

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            app_logger.critical(f"JSON Syntax Error in {file_path}: {e}")
            raise ValueError(f"JSON syntax error in file {file_path.name}")

        app_logger.debug(f"Loaded JSON: {file_path.name}")
        return data

    @staticmethod
    def load_config(filename: Path = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
        return FileHandler.load_json(filename)

    @staticmethod
    def load_table(file_path: Path) -> pd.DataFrame:
        """CSV with every column as text, so IDs keep leading zeros and the K check digit."""
        file_path = Path(file_path)
        if not file_path.exists():
            app_logger.error(f"File not found: {file_path}")
            raise FileNotFoundError(f"File not found: {file_path}")

        df = pd.read_csv(file_path, dtype=str, encoding='utf-8-sig').fillna("")
        app_logger.debug(f"Loaded table {file_path.name}: {len(df)} rows")
        return df

    @staticmethod
    def write_records(records: List[Dict[str, Any]], path: Path, append: bool = True) -> None:
        """
        Write `records` as one row each to a .csv or .xlsx table. With `append`
        the rows go after those already in the file; otherwise the file is
        replaced (and removed when there is nothing left to write).
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        exists = path.exists()

        if not records and not append:
            if exists:
                path.unlink()
            return

        df = pd.DataFrame(records)
        if path.suffix == ".xlsx":
            if append and exists:
                df = pd.concat([pd.read_excel(path, dtype={'CorrectedAt': str}), df], ignore_index=True)
            df.to_excel(path, index=False)
        else:
            keep = append and exists
            # no header row when appending
            df.to_csv(path, mode='a' if keep else 'w', index=False, header=not keep, encoding='utf-8-sig')

        app_logger.info(f"{len(records)} results written to: {path.name}")
