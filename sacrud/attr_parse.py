import datetime
import sacrud
import sqlalchemy


def parse_attr(column, attr_val):
    """
    Parse the supplied `attr_val` so it can be bound to the SQLAlchemy `column`,
    values come from DTOs and from filter strings

    :param column: SQLAlchemy column
    :param attr_val: DTO or filter value
    :return: processed value
    """
    if attr_val is None or isinstance(attr_val, bool):
        return attr_val

    try:
        python_type = column.type.python_type
    except NotImplementedError as exc:
        # custom column types handle their own conversion
        sacrud.log.debug(exc)
        return attr_val

    # skip type coercion on JSON columns, since they could be anything
    if isinstance(column.type, sqlalchemy.types.JSON) or isinstance(attr_val, python_type):
        return attr_val

    if python_type == datetime.datetime:
        return parse_datetime(attr_val)
    if python_type == datetime.date:
        return parse_datetime(attr_val).date()
    if python_type == datetime.time:
        date_str = str(attr_val)
        fmt = "%H:%M:%S.%f" if "." in date_str else "%H:%M:%S"
        return datetime.datetime.strptime(date_str, fmt).time()
    return python_type(attr_val)


def parse_datetime(attr_val):
    date_str = str(attr_val)
    try:
        return datetime.datetime.fromisoformat(date_str)
    except ValueError:
        # str(datetime.datetime.now()) => "%Y-%m-%d %H:%M:%S.%f"
        fmt = "%Y-%m-%d %H:%M:%S.%f" if "." in date_str else "%Y-%m-%d %H:%M:%S"
        return datetime.datetime.strptime(date_str, fmt)
