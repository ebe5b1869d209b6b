from sqlalchemy import Connection


def release_read_transaction(connection: Connection) -> None:
    """Commit the transaction a preceding read autobegan.

    Services open their own ``connection.begin()`` blocks; SQLAlchemy refuses
    to begin while an implicit read transaction is still open.
    """
    if connection.in_transaction():
        connection.commit()
