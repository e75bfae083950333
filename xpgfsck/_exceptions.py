''' _exceptions.py - module specific exceptions

Copyright (c) 2022 Netherlands Forensic Institute - MIT License
'''

class InvalidArgumentException(Exception):
    ''' raised when a function receives an invalid argument '''
    pass


class UserFeedbackException(Exception):
    ''' raised when the user can fix the exception by providing different input '''
    pass


class AssumptionBrokenException(Exception):
    ''' raised when an assumption is broken '''
    pass


class SchemaGapException(Exception):
    ''' raised when the column schema of a relation misses a column number '''

    def __init__(s, relation, missing):
        s.relation = relation
        s.missing = missing
        super().__init__('column schema of {} misses column {:d}'.format(relation, missing))


class RelationOpenException(Exception):
    ''' raised when the file(s) of a relation can not be found or opened '''
    pass
