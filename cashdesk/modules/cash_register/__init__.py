"""
Módulo de caja registradora

ENTIDADES PRINCIPALES:
- CashRegister: sesión de caja con apertura/cierre y arqueo
- CashMovement: movimientos manuales (suprimento, sangría, cambio)

FUNCIONALIDADES:
- Apertura con saldo inicial validado
- Registro de movimientos con recálculo del saldo esperado
- Cierre manual con diferencia contra el saldo esperado
- Cierre automático a la hora de corte configurada
- Arqueo e historial de cajas cerradas

REGLAS DE NEGOCIO:
- Solo una caja abierta a la vez
- Movimientos y cierre requieren caja abierta
- Una caja cerrada no se modifica
- Ventas anuladas no entran en el arqueo
"""
