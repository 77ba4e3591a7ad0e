"""
The module is intended to give access to a set of unified keywords, units etc.

To access the quantities, invoke pf.KEY.

"""

""" Global keywords

Define unified keywords used throughout the software.
"""
# Names of the supported discretization schemes
CELL_CENTERED = "ecfv"
BOX = "box"

# Names of the supported time discretizations
STATIONARY = "stationary"
IMPLICIT_EULER = "implicit_euler"
BDF2 = "bdf2"

# Boundary condition keywords, shared with the BoundaryCondition class
DIRICHLET = "dir"
NEUMANN = "neu"

""" Units """
# SI Prefixes
NANO = 1e-9
MICRO = 1e-6
MILLI = 1e-3
CENTI = 1e-2
KILO = 1e3
MEGA = 1e6

# Time
SECOND = 1.0
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE
DAY = 24 * HOUR
YEAR = 365 * DAY

# Weight
KILOGRAM = 1.0
GRAM = 1e-3 * KILOGRAM

# Length
METER = 1.0
CENTIMETER = CENTI * METER
MILLIMETER = MILLI * METER

# Pressure related quantities
DARCY = 9.869233e-13
MILLIDARCY = MILLI * DARCY

PASCAL = 1.0
BAR = 100000 * PASCAL
ATMOSPHERIC_PRESSURE = 101325 * PASCAL

GRAVITY_ACCELERATION = 9.80665 * METER / SECOND**2

# Molar gas constant, J / (mol K)
GAS_CONSTANT = 8.314462618

# Temperature
CELSIUS = 1.0


def CELSIUS_to_KELVIN(celsius):
    return celsius + 273.15


def KELVIN_to_CELSIUS(kelvin):
    return kelvin - 273.15
