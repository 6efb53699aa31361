'''
Exceptions raised while loading tables and analyzing variables.

Exceptions `AmbiguousVariable`, `InsufficientGroupSize`, and `MissingJoinTarget` concern one variable.
Drivers that analyze catalogs of variables catch them and record rows that are not computed.
Exception `MalformedInputSchema` concerns a whole table and aborts a run.
'''


class AnalysisError(Exception):
    pass


class AmbiguousVariable(AnalysisError):
    '''
    A pair of animal ID and key appears more than once after filtering.
    '''
    pass


class InsufficientGroupSize(AnalysisError):
    '''
    A group being compared has fewer observations than required.
    '''
    pass


class MissingJoinTarget(AnalysisError):
    '''
    Too few rows remain after joining a reference series and a candidate series.
    '''
    pass


class MalformedInputSchema(AnalysisError):
    '''
    A loaded table lacks a required column.
    '''

    def __init__(self, name_of_table, list_of_missing_columns, list_of_available_columns = None):
        self.name_of_table = name_of_table
        self.list_of_missing_columns = list(list_of_missing_columns)
        message = f"Table {name_of_table} lacks required columns {self.list_of_missing_columns}."
        if list_of_available_columns is not None:
            message += f" Available columns are {list(list_of_available_columns)}."
        super().__init__(message)
