from .batch import *
from .stamp import *
from .status import *
