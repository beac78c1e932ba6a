__version__ = "0.4.0"
__description__ = "sacrud : generic SQLAlchemy CRUD engine with include trees and tenant schemas"
