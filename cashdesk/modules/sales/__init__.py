"""
Ventas vistas desde la caja: solo lectura por caja registradora.
"""
