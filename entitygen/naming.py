"""Identifier conventions shared by the entity emitter and the changeset writer.

Persisted names (tables, columns) that collide with an SQL reserved word get
RESERVED_SUFFIX appended. Public attribute names are never renamed.
"""

from __future__ import annotations

import re

RESERVED_SUFFIX = "_01"

# SQL:2003 / PostgreSQL keywords, upper-cased.
RESERVED_WORDS: frozenset[str] = frozenset(
    """
    A ABORT ABS ABSOLUTE ACCESS ACTION ADA ADD ADMIN AFTER AGGREGATE ALIAS ALL ALLOCATE
    ALSO ALTER ALWAYS ANALYSE ANALYZE AND ANY ARE ARRAY AS ASC ASENSITIVE ASSERTION
    ASSIGNMENT ASYMMETRIC AT ATOMIC ATTRIBUTE ATTRIBUTES AUTHORIZATION AVG BEFORE BEGIN
    BETWEEN BIGINT BINARY BIT BIT_LENGTH BLOB BOOLEAN BOTH BREADTH BY C CALL CALLED
    CARDINALITY CASCADE CASCADED CASE CAST CATALOG CATALOG_NAME CEIL CEILING CHAIN CHAR
    CHARACTER CHARACTERISTICS CHARACTER_LENGTH CHAR_LENGTH CHECK CHECKPOINT CLASS
    CLASS_ORIGIN CLOB CLOSE CLUSTER COALESCE COBOL COLLATE COLLATION COLLATION_CATALOG
    COLLATION_NAME COLLATION_SCHEMA COLLECT COLUMN COLUMN_NAME COMMAND_FUNCTION
    COMMAND_FUNCTION_CODE COMMENT COMMIT COMMITTED COMPLETION CONDITION CONDITION_NUMBER
    CONNECT CONNECTION CONNECTION_NAME CONSTRAINT CONSTRAINT_CATALOG CONSTRAINT_NAME
    CONSTRAINT_SCHEMA CONSTRAINTS CONSTRUCTOR CONTAINS CONTINUE CONVERSION CONVERT COPY
    CORR CORRESPONDING COUNT COVAR_POP COVAR_SAMP CREATE CROSS CUBE CUME_DIST CURRENT
    CURRENT_DATE CURRENT_DEFAULT_TRANSFORM_GROUP CURRENT_PATH CURRENT_ROLE CURRENT_TIME
    CURRENT_TIMESTAMP CURRENT_TRANSFORM_GROUP_FOR_TYPE CURRENT_USER CURSOR CYCLE DATA DATE
    DATETIME_INTERVAL_CODE DATETIME_INTERVAL_PRECISION DAY DEALLOCATE DEC DECIMAL DECLARE
    DEFAULT DEFERRABLE DEFERRED DEFINED DEFINER DEGREE DELETE DENSE_RANK DEPTH DEREF
    DERIVED DESC DESCRIBE DESCRIPTOR DETERMINISTIC DIAGNOSTICS DISCONNECT DISTINCT DO
    DOMAIN DOUBLE DROP DYNAMIC DYNAMIC_FUNCTION DYNAMIC_FUNCTION_CODE EACH ELEMENT ELSE
    ELSEIF END END-EXEC EQUALS ESCAPE EVERY EXCEPT EXCEPTION EXEC EXECUTE EXISTS EXIT
    EXTERNAL EXTRACT FALSE FETCH FILTER FIRST FIRST_VALUE FLOAT FLOOR FOR FOREIGN FORTRAN
    FOUND FREE FREEZE FROM FULL FUNCTION FUSION G GENERAL GENERATED GET GLOBAL GO GOTO
    GRANT GRANTED GROUP GROUPING HANDLER HAVING HIERARCHY HOLD HOUR IDENTITY IF IGNORE
    ILIKE IMMEDIATE IMMUTABLE IMPLEMENTATION IMPLICIT IN INCLUDING INCREMENT INDEX
    INDICATOR INFIX INHERIT INHERITS INITIAL INITIALIZE INITIALLY INNER INPUT INSENSITIVE
    INSERT INSTANCE INSTANTIABLE INSTEAD INT INTEGER INTERSECT INTERSECTION INTERVAL INTO
    INVOKER IS ISNULL ISOLATION ITERATE JOIN K KEY KEY_MEMBER KEY_TYPE LANGUAGE LARGE LAST
    LAST_VALUE LATERAL LEADING LEAST LEFT LENGTH LESS LEVEL LIKE LIMIT LN LOCAL LOCALTIME
    LOCALTIMESTAMP LOCATOR LOWER M MAP MATCH MATCHED MAX MAX_CARDINALITY MEMBER MERGE
    MESSAGE_LENGTH MESSAGE_OCTET_LENGTH MESSAGE_TEXT METHOD MIN MINUTE MINVALUE MOD MODE
    MODIFIES MODIFY MODULE MONTH MORE MOVE MULTISET MUMPS NAME NAMES NATIONAL NATURAL NCHAR
    NCLOB NESTING NEW NEXT NO NONE NORMALIZE NORMALIZED NOT NULL NULLABLE NULLIF NUMERIC
    OBJECT OCTET_LENGTH OF OFF OFFSET OLD ON ONLY OPEN OPERATION OPTION OPTIONS OR ORDER
    ORDERING ORDINALITY OTHERS OUT OUTER OUTPUT OVER OVERLAPS OVERLAY OVERRIDING PAD
    PARAMETER PARAMETER_MODE PARAMETER_NAME PARAMETER_ORDINAL_POSITION
    PARAMETER_SPECIFIC_CATALOG PARAMETER_SPECIFIC_NAME PARAMETER_SPECIFIC_SCHEMA PARTIAL
    PARTITION PASCAL PATH PERCENT PERCENTILE_CONT PERCENTILE_DISC PERCENT_RANK PLACING PLI
    POSITION POSTFIX POWER PRECEDING PRECISION PREFIX PREORDER PREPARE PRESERVE PRIMARY
    PRIOR PRIVILEGES PROCEDURE PUBLIC RANGE RANK READ READS REAL RECURSIVE REF REFERENCES
    REFERENCING REGR_AVGX REGR_AVGY REGR_COUNT REGR_INTERCEPT REGR_R2 REGR_SLOPE REGR_SXX
    REGR_SXY REGR_SYY RELATIVE RELEASE REPEAT RESTRICT RESULT RETURN RETURNED_CARDINALITY
    RETURNED_LENGTH RETURNED_OCTET_LENGTH RETURNED_SQLSTATE RETURNS REVOKE RIGHT ROLE
    ROLLBACK ROLLUP ROUTINE ROW ROWS ROW_COUNT ROW_NUMBER SAVEPOINT SCALE SCHEMA
    SCHEMA_NAME SCOPE SCROLL SEARCH SECOND SECTION SECURITY SELECT SELF SENSITIVE SEQUENCE
    SERIALIZABLE SERVER_NAME SESSION SESSION_USER SET SETOF SETS SIMILAR SIZE SMALLINT SOME
    SOURCE SPACE SPECIFIC SPECIFICTYPE SPECIFIC_NAME SQL SQLCODE SQLERROR SQLEXCEPTION
    SQLSTATE SQLWARNING SQRT STABLE START STATE STATEMENT STATIC STATISTICS STDDEV_POP
    STDDEV_SAMP STDIN STDOUT STORAGE STRING STRUCTURE STYLE SUBCLASS_ORIGIN SUBMULTISET
    SUBSTRING SUM SYMMETRIC SYSTEM SYSTEM_USER TABLE TABLE_NAME TABLESAMPLE TEMPORARY
    TERMINATE THAN THEN TIME TIMESTAMP TIMEZONE_HOUR TIMEZONE_MINUTE TO TRAILING
    TRANSACTION TRANSACTION_ACTIVE TRANSACTIONS_COMMITTED TRANSACTIONS_ROLLED_BACK
    TRANSFORM TRANSFORMS TRANSLATE TRANSLATION TREAT TRIGGER TRIGGER_CATALOG TRIGGER_NAME
    TRIGGER_SCHEMA TRIM TRUE TRUNCATE TYPE UESCAPE UNDER UNION UNIQUE UNKNOWN UNNEST UPDATE
    UPPER USAGE USER USER_DEFINED_TYPE_CATALOG USER_DEFINED_TYPE_CODE
    USER_DEFINED_TYPE_NAME USER_DEFINED_TYPE_SCHEMA USING VALUE VALUES VAR_POP VAR_SAMP
    VARCHAR VARIABLE VARYING VERBOSE VERSION VIEW WHEN WHENEVER WHERE WIDTH WITH WITHIN
    WITHOUT WORK WRITE YEAR ZONE
    """.split()
)


def is_reserved(name: str) -> bool:
    return name.upper() in RESERVED_WORDS


def persisted_name(name: str) -> str:
    """Return the storage-safe form of a table or column name."""
    if is_reserved(name):
        return name + RESERVED_SUFFIX
    return name


def to_snake_case(name: str) -> str:
    s1 = re.sub("(.)([A-Z][a-z]+)", r"\1_\2", name)
    s2 = re.sub("([a-z0-9])([A-Z])", r"\1_\2", s1)
    return s2.lower()


def table_name_for(class_name: str) -> str:
    return persisted_name(to_snake_case(class_name))


def column_name_for(field_name: str) -> str:
    return persisted_name(to_snake_case(field_name))


def entity_class_name(model_name: str) -> str:
    return f"{model_name}Entity"


def entity_module_name(model_name: str) -> str:
    return f"{to_snake_case(model_name)}_entity"
