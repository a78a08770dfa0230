"""
Tests for ODBC Connection Helper Module

These tests validate connection string building, connection lifetime,
parameterization and error handling of ODBC operations.
"""

import pytest
from unittest.mock import Mock, MagicMock, patch
import pyodbc
from sql_data_copier.exceptions import DatabaseConnectionError
from sql_data_copier.odbc_helper import (
    OdbcConnectionHelper,
    build_connection_config,
    build_connection_string,
    connection_string_for,
)


def _mock_connection(fetchall=None, fetchone=None):
    mock_cursor = MagicMock()
    mock_cursor.fetchall.return_value = fetchall if fetchall is not None else []
    mock_cursor.fetchone.return_value = fetchone
    mock_connection = MagicMock()
    mock_connection.cursor.return_value = mock_cursor
    return mock_connection, mock_cursor


class TestConnectionConfig:
    """Test building ODBC connection strings from Airflow connections."""

    @pytest.fixture
    def mock_airflow_connection(self):
        """Create mock Airflow connection object."""
        conn = Mock()
        conn.host = 'localhost'
        conn.port = 1433
        conn.schema = 'TestDB'
        conn.login = 'sa'
        conn.password = 'TestPassword123'
        return conn

    def test_connection_config_sql_auth(self, mock_airflow_connection, monkeypatch):
        """Test connection config generation for SQL Server authentication."""
        monkeypatch.delenv('ODBC_DRIVER', raising=False)
        config = build_connection_config(mock_airflow_connection)

        assert config['DRIVER'] == '{ODBC Driver 18 for SQL Server}'
        # Port 1433 is default, so not appended to server string
        assert config['SERVER'] == 'localhost'
        assert config['DATABASE'] == 'TestDB'
        assert config['UID'] == 'sa'
        assert config['PWD'] == 'TestPassword123'
        assert config['Trusted_Connection'] == 'no'
        assert config['TrustServerCertificate'] == 'yes'

    def test_connection_config_windows_auth(self, mock_airflow_connection):
        """No login triggers Windows auth without UID/PWD."""
        mock_airflow_connection.login = None
        mock_airflow_connection.password = None

        config = build_connection_config(mock_airflow_connection)

        assert config['Trusted_Connection'] == 'yes'
        assert 'UID' not in config
        assert 'PWD' not in config

    def test_connection_config_non_standard_port(self, mock_airflow_connection):
        mock_airflow_connection.host = 'sqlserver.example.com'
        mock_airflow_connection.port = 14330

        config = build_connection_config(mock_airflow_connection)

        assert config['SERVER'] == 'sqlserver.example.com,14330'

    def test_connection_config_default_port(self, mock_airflow_connection):
        mock_airflow_connection.port = None

        config = build_connection_config(mock_airflow_connection)

        assert config['SERVER'] == 'localhost'

    def test_driver_from_environment(self, mock_airflow_connection, monkeypatch):
        monkeypatch.setenv('ODBC_DRIVER', '{ODBC Driver 17 for SQL Server}')

        config = build_connection_config(mock_airflow_connection)

        assert config['DRIVER'] == '{ODBC Driver 17 for SQL Server}'

    def test_build_connection_string_skips_empty_values(self):
        conn_str = build_connection_string({
            'DRIVER': '{ODBC Driver 18 for SQL Server}',
            'SERVER': 'localhost',
            'DATABASE': '',
        })

        assert conn_str == 'DRIVER={ODBC Driver 18 for SQL Server};SERVER=localhost'

    def test_connection_string_for_conn_id(self, mock_airflow_connection):
        with patch('sql_data_copier.odbc_helper.BaseHook.get_connection') as mock_get_conn:
            mock_get_conn.return_value = mock_airflow_connection
            conn_str = connection_string_for('mssql_source')

        mock_get_conn.assert_called_once_with('mssql_source')
        assert 'SERVER=localhost' in conn_str
        assert 'DATABASE=TestDB' in conn_str
        assert 'UID=sa' in conn_str

    def test_from_conn_id_names_helper(self, mock_airflow_connection):
        with patch('sql_data_copier.odbc_helper.BaseHook.get_connection') as mock_get_conn:
            mock_get_conn.return_value = mock_airflow_connection
            helper = OdbcConnectionHelper.from_conn_id('mssql_source')

        assert helper.name == 'mssql_source'
        assert 'DATABASE=TestDB' in helper.connection_string


class TestOdbcConnectionHelper:
    """Test query execution and connection lifetime."""

    @pytest.fixture
    def helper(self):
        return OdbcConnectionHelper('DRIVER={x};SERVER=localhost;DATABASE=TestDB', name='source')

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_get_conn_creates_connection(self, mock_connect, helper):
        mock_connection = MagicMock()
        mock_connect.return_value = mock_connection

        conn = helper.get_conn()

        assert conn == mock_connection
        assert mock_connect.call_args[0][0] == helper.connection_string

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_get_conn_failure_raises_connection_error(self, mock_connect, helper):
        mock_connect.side_effect = pyodbc.Error('08001', 'Login timeout expired')

        with pytest.raises(DatabaseConnectionError, match='source'):
            helper.get_conn()

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_get_records_executes_query(self, mock_connect, helper):
        mock_connection, mock_cursor = _mock_connection(fetchall=[(1, 'Alice'), (2, 'Bob')])
        mock_connect.return_value = mock_connection

        result = helper.get_records('SELECT id, name FROM users')

        assert result == [(1, 'Alice'), (2, 'Bob')]
        mock_cursor.execute.assert_called_once_with('SELECT id, name FROM users')

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_get_records_with_parameters(self, mock_connect, helper):
        mock_connection, mock_cursor = _mock_connection(fetchall=[(1, 'Alice')])
        mock_connect.return_value = mock_connection

        helper.get_records('SELECT * FROM users WHERE id = ?', parameters=[1])

        mock_cursor.execute.assert_called_once_with('SELECT * FROM users WHERE id = ?', [1])

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_get_first_returns_single_row(self, mock_connect, helper):
        mock_connection, mock_cursor = _mock_connection(fetchone=(1, 'Alice'))
        mock_connect.return_value = mock_connection

        assert helper.get_first('SELECT TOP 1 id, name FROM users') == (1, 'Alice')
        mock_cursor.fetchone.assert_called_once()

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_get_scalar_returns_first_column(self, mock_connect, helper):
        mock_connection, _ = _mock_connection(fetchone=(42, 'ignored'))
        mock_connect.return_value = mock_connection

        assert helper.get_scalar('SELECT COUNT(*), 1') == 42

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_get_scalar_with_no_rows(self, mock_connect, helper):
        mock_connection, _ = _mock_connection(fetchone=None)
        mock_connect.return_value = mock_connection

        assert helper.get_scalar('SELECT x FROM empty_table') is None

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_connection_closed_after_success(self, mock_connect, helper):
        mock_connection, _ = _mock_connection()
        mock_connect.return_value = mock_connection

        helper.get_records('SELECT 1')

        mock_connection.close.assert_called_once()

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_connection_closed_on_error(self, mock_connect, helper):
        mock_connection, mock_cursor = _mock_connection()
        mock_cursor.execute.side_effect = pyodbc.Error('42S02', 'Invalid object name')
        mock_connect.return_value = mock_connection

        with pytest.raises(pyodbc.Error):
            helper.get_records('SELECT * FROM nonexistent')

        mock_connection.close.assert_called_once()

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_connection_context_manager_closes(self, mock_connect, helper):
        mock_connection, _ = _mock_connection()
        mock_connect.return_value = mock_connection

        with helper.connection() as conn:
            assert conn is mock_connection

        mock_connection.close.assert_called_once()

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_check_connection_runs_probe(self, mock_connect, helper):
        mock_connection, mock_cursor = _mock_connection(fetchone=(1,))
        mock_connect.return_value = mock_connection

        helper.check_connection()

        mock_cursor.execute.assert_called_once_with("SELECT 1")
        mock_connection.close.assert_called_once()

    def test_release_conn_with_none(self, helper):
        # Should not raise
        helper.release_conn(None)


class TestErrorHandling:
    """Test error logging."""

    @pytest.fixture
    def helper(self):
        return OdbcConnectionHelper('DRIVER={x};SERVER=localhost', name='destination')

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    @patch('sql_data_copier.odbc_helper.logger')
    def test_error_logging_includes_query(self, mock_logger, mock_connect, helper):
        mock_connection, mock_cursor = _mock_connection()
        mock_cursor.execute.side_effect = pyodbc.Error('42000', 'Syntax error')
        mock_connect.return_value = mock_connection

        with pytest.raises(pyodbc.Error):
            helper.get_records('SELECT * FROM bad syntax')

        assert any('SELECT * FROM bad syntax' in str(c) for c in mock_logger.error.call_args_list)

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    @patch('sql_data_copier.odbc_helper.logger')
    def test_error_logging_includes_parameters(self, mock_logger, mock_connect, helper):
        mock_connection, mock_cursor = _mock_connection()
        mock_cursor.execute.side_effect = pyodbc.Error('22018', 'Parameter error')
        mock_connect.return_value = mock_connection

        with pytest.raises(pyodbc.Error):
            helper.get_first('SELECT * FROM users WHERE id = ?', parameters=[999])

        error_calls = [str(c) for c in mock_logger.error.call_args_list]
        assert any('[999]' in c for c in error_calls)

    @patch('sql_data_copier.odbc_helper.pyodbc.connect')
    def test_parameterization_prevents_sql_injection(self, mock_connect, helper):
        mock_connection, mock_cursor = _mock_connection()
        mock_connect.return_value = mock_connection

        malicious_input = "'; DROP TABLE users; --"
        helper.get_records('SELECT * FROM users WHERE name = ?', parameters=[malicious_input])

        call_args = mock_cursor.execute.call_args
        assert call_args[0][0] == 'SELECT * FROM users WHERE name = ?'
        assert call_args[0][1] == [malicious_input]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
