"""Spreadsheet parsing and normalization for evaluation imports."""

import logging
import re
from datetime import date, datetime
from io import BytesIO
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from eduadmin.models import GraduationEvaluation, GraduationStatus, TeacherEvaluation

logger = logging.getLogger(__name__)

TEACHER = 'teacher'
GRADUATION = 'graduation'

COLUMN_ALIASES: Dict[str, Dict[str, List[str]]] = {
    TEACHER: {
        'student_id': ['student id', 'studentid', 'student#', 'student number', 'student no', 'mssv'],
        'student_name': ['student name', 'studentname', 'name', 'student', 'full name'],
        'teacher_name': ['teacher name', 'teacher', 'teachername', 'evaluator'],
        'class_code': ['class code', 'classcode', 'class'],
        'score': ['score', 'academic score', 'teacher score', 'grade'],
        'attitude': ['attitude', 'attitude score'],
        'participation': ['participation', 'participation score'],
        'feedback': ['feedback', 'comment', 'comments', 'notes'],
        'date': ['date', 'evaluation date', 'evaluated on'],
    },
    GRADUATION: {
        'student_id': ['student id', 'studentid', 'student#', 'student number', 'student no', 'mssv'],
        'student_name': ['student name', 'studentname', 'name', 'student', 'full name'],
        'gpa': ['gpa', 'grade point average'],
        'total_credits': ['total credits', 'credits', 'earned credits', 'credits earned'],
        'required_credits': ['required credits', 'credits required'],
        'thesis_score': ['thesis score', 'thesis'],
        'final_exam_score': ['final exam score', 'final exam', 'exam score'],
        'status': ['status', 'graduation status'],
        'evaluation_date': ['evaluation date', 'date', 'evaluated on'],
        'notes': ['notes', 'note', 'comments'],
    },
}

REQUIRED_COLUMNS = {
    TEACHER: ['student_id', 'score'],
    GRADUATION: ['student_id', 'gpa', 'total_credits'],
}

DEFAULT_REQUIRED_CREDITS = 120

STATUS_ALIASES = {
    'passed': GraduationStatus.PASSED,
    'pass': GraduationStatus.PASSED,
    'failed': GraduationStatus.FAILED,
    'fail': GraduationStatus.FAILED,
    'pending': GraduationStatus.PENDING,
}


def normalize_col_name(col_name) -> str:
    """Lowercase, trim, drop punctuation except '#', collapse whitespace."""
    if pd.isna(col_name):
        return ''
    normalized = str(col_name).strip().lower()
    normalized = re.sub(r'[.,%_\-]', ' ', normalized)
    normalized = re.sub(r'\s+', ' ', normalized)
    return normalized.strip()


def normalize_and_rename_columns(df: pd.DataFrame, sheet_type: str) -> pd.DataFrame:
    """
    Rename spreadsheet headers to canonical field names.

    Headers are matched against COLUMN_ALIASES after normalization. The
    first header matching a field wins; later duplicates are left alone.

    Args:
        df: Raw DataFrame as read from the file
        sheet_type: "teacher" or "graduation"

    Returns:
        Copy of df with canonical column names
    """
    if sheet_type not in COLUMN_ALIASES:
        raise ValueError(f"Unknown sheet type '{sheet_type}'")

    df = df.copy()
    target_mappings = COLUMN_ALIASES[sheet_type]

    rename = {}
    for orig_col in df.columns:
        normalized = normalize_col_name(orig_col)
        for target_name, variations in target_mappings.items():
            if normalized == target_name.replace('_', ' ') or normalized in variations:
                if target_name not in rename.values():
                    rename[orig_col] = target_name
                break

    if rename:
        df = df.rename(columns=rename)
        logger.debug("Renamed %s columns: %s", sheet_type, rename)
    else:
        logger.warning("No columns recognised in %s sheet. Original columns: %s", sheet_type, list(df.columns))

    # Remove duplicate columns (keep first occurrence)
    if df.columns.duplicated().any():
        df = df.loc[:, ~df.columns.duplicated(keep='first')]

    missing = [c for c in REQUIRED_COLUMNS[sheet_type] if c not in df.columns]
    if missing:
        raise ValueError(
            f"Missing required columns for {sheet_type} evaluations: {', '.join(missing)}. "
            f"Found columns: {list(df.columns)}"
        )
    return df


def parse_number(x) -> Optional[float]:
    """
    Parse a cell to a finite float, or None when it holds no usable number.

    Strings may carry '%' signs and whitespace.
    """
    if x is None:
        return None
    try:
        if pd.isna(x):
            return None
    except (TypeError, ValueError):
        return None
    try:
        if isinstance(x, str):
            val_str = x.strip().replace('%', '').replace(',', '.').strip()
            if not val_str:
                return None
            val = float(val_str)
        else:
            val = float(x)
    except (ValueError, TypeError):
        logger.debug("Could not parse numeric value %r", x)
        return None
    if np.isnan(val) or np.isinf(val):
        return None
    return val


def to_number(x) -> float:
    """Like parse_number, with 0.0 for anything unusable."""
    val = parse_number(x)
    return 0.0 if val is None else val


def clamp(value: float, lower: float, upper: float) -> float:
    return float(min(max(value, lower), upper))


def clean_text(x) -> str:
    if x is None:
        return ''
    try:
        if pd.isna(x):
            return ''
    except (TypeError, ValueError):
        pass
    return str(x).strip()


def clean_student_id(x) -> str:
    """Student ids read as floats (e.g. 1001.0) are turned back into '1001'."""
    if isinstance(x, (float, np.floating)) and not pd.isna(x) and float(x).is_integer():
        return str(int(x))
    return clean_text(x)


def clean_date(x) -> str:
    if x is None or (not isinstance(x, str) and pd.isna(x)):
        return ''
    if isinstance(x, (pd.Timestamp, datetime, date)):
        return pd.Timestamp(x).date().isoformat()
    text = clean_text(x)
    if not text:
        return ''
    parsed = pd.to_datetime(text, errors='coerce')
    return parsed.date().isoformat() if not pd.isna(parsed) else text


def parse_status(x) -> GraduationStatus:
    return STATUS_ALIASES.get(clean_text(x).lower(), GraduationStatus.PENDING)


def load_table(file_bytes: bytes, filename: str) -> pd.DataFrame:
    """Read the first worksheet of an Excel file, or a CSV file, into a DataFrame."""
    name = (filename or '').lower()
    if name.endswith('.csv'):
        return pd.read_csv(BytesIO(file_bytes), dtype=object)
    if name.endswith('.xlsx'):
        return pd.read_excel(BytesIO(file_bytes), sheet_name=0, dtype=object, engine='openpyxl')
    raise ValueError('Invalid file type. Please upload an Excel (.xlsx) or CSV file')


def _drop_rows_without_id(df: pd.DataFrame) -> Tuple[pd.DataFrame, int]:
    ids = df['student_id'].map(clean_student_id)
    keep = ids != ''
    skipped = int((~keep).sum())
    df = df.loc[keep].copy()
    df['student_id'] = ids[keep]
    return df, skipped


def normalize_teacher_rows(df: pd.DataFrame) -> Tuple[List[TeacherEvaluation], int]:
    df = normalize_and_rename_columns(df, TEACHER)
    df, skipped = _drop_rows_without_id(df)

    records = []
    for _, row in df.iterrows():
        fields = {
            'student_id': row['student_id'],
            'student_name': clean_text(row.get('student_name')),
            'teacher_name': clean_text(row.get('teacher_name')),
            'class_code': clean_text(row.get('class_code')),
            'score': clamp(to_number(row.get('score')), 0, 100),
            'attitude': clamp(to_number(row.get('attitude')), 0, 100),
            'participation': clamp(to_number(row.get('participation')), 0, 100),
            'feedback': clean_text(row.get('feedback')),
        }
        evaluated_on = clean_date(row.get('date'))
        if evaluated_on:
            fields['date'] = evaluated_on
        records.append(TeacherEvaluation(**fields))
    return records, skipped


def normalize_graduation_rows(df: pd.DataFrame) -> Tuple[List[GraduationEvaluation], int]:
    df = normalize_and_rename_columns(df, GRADUATION)
    df, skipped = _drop_rows_without_id(df)

    records = []
    for _, row in df.iterrows():
        required_credits = parse_number(row.get('required_credits'))
        if required_credits is None:
            required_credits = DEFAULT_REQUIRED_CREDITS
        fields = {
            'student_id': row['student_id'],
            'student_name': clean_text(row.get('student_name')),
            'gpa': clamp(to_number(row.get('gpa')), 0, 4.0),
            'total_credits': int(max(to_number(row.get('total_credits')), 0)),
            'required_credits': int(max(required_credits, 0)),
            'thesis_score': clamp(to_number(row.get('thesis_score')), 0, 100),
            'final_exam_score': clamp(to_number(row.get('final_exam_score')), 0, 100),
            'status': parse_status(row.get('status')),
            'notes': clean_text(row.get('notes')),
        }
        evaluated_on = clean_date(row.get('evaluation_date'))
        if evaluated_on:
            fields['evaluation_date'] = evaluated_on
        records.append(GraduationEvaluation(**fields))
    return records, skipped


def parse_evaluations(file_bytes: bytes, filename: str, kind: str):
    """
    Parse an uploaded spreadsheet into evaluation records.

    Returns:
        Tuple of (records, skipped_row_count)
    """
    df = load_table(file_bytes, filename)
    df = df.dropna(how='all')
    if kind == TEACHER:
        records, skipped = normalize_teacher_rows(df)
    elif kind == GRADUATION:
        records, skipped = normalize_graduation_rows(df)
    else:
        raise ValueError(f"Unknown evaluation kind '{kind}'")
    logger.info("Parsed %d %s evaluations from %s (%d rows skipped)", len(records), kind, filename, skipped)
    return records, skipped
