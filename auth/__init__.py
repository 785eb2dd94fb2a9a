"""auth/ -- Authentication, lockout, and user/role management for Gatehouse.

Public surface: SecurityManager (auth.manager), the StorageAdapter protocol
(auth.adapter), the two adapters SqlStore (auth.store) and XmlStore
(auth.xml_store), and the error taxonomy in auth.errors.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
