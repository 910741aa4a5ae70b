"""
Streamlit dashboard for reviewing recorded vehicle pose telemetry.

Run with: streamlit run src/dashboard.py -- --db data/telemetry.db
"""

import sys
import argparse

import streamlit as st
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

from database import TelemetryDatabase
from kinematics import TrackKinematics


def create_track_figure(poses_df: pd.DataFrame, frame_size=None) -> go.Figure:
    """
    Plot the vehicle track in image coordinates with principal axes.

    Args:
        poses_df: DataFrame of found poses (x, y, axis_* columns)
        frame_size: Optional (width, height) to fix the axis ranges

    Returns:
        Plotly figure object
    """
    fig = go.Figure()

    fig.add_trace(go.Scatter(
        x=poses_df['x'],
        y=poses_df['y'],
        mode='lines+markers',
        line=dict(color='green', width=2),
        marker=dict(size=4, color=poses_df['frame_number'], colorscale='Viridis',
                    showscale=True, colorbar=dict(title="Frame")),
        name='Position',
        hovertemplate="Frame %{marker.color}<br>x=%{x:.1f}, y=%{y:.1f}<extra></extra>"
    ))

    # Every 10th principal axis, to keep the plot readable
    axes = poses_df.dropna(subset=['axis_x1', 'axis_y1', 'axis_x2', 'axis_y2']).iloc[::10]
    for _, row in axes.iterrows():
        fig.add_trace(go.Scatter(
            x=[row['axis_x1'], row['axis_x2']],
            y=[row['axis_y1'], row['axis_y2']],
            mode='lines',
            line=dict(color='gold', width=2),
            showlegend=False,
            hoverinfo='skip'
        ))

    # Image coordinates: y grows downwards
    fig.update_yaxes(autorange='reversed', scaleanchor='x', scaleratio=1)
    if frame_size and all(frame_size):
        width, height = frame_size
        fig.update_xaxes(range=[0, width])
        fig.update_yaxes(range=[height, 0], autorange=False)

    fig.update_layout(
        xaxis_title="x (pixels)",
        yaxis_title="y (pixels)",
        height=600
    )

    return fig


def load_data(db_path: str):
    """Load sessions and poses from the database."""
    db = TelemetryDatabase(db_path)

    sessions = db.get_all_sessions()
    all_poses = []

    for session in sessions:
        for pose in db.get_session_poses(session['session_id']):
            pose['session_date'] = session['date']
            pose['source'] = session['source']
            all_poses.append(pose)

    db.close()

    return pd.DataFrame(sessions), pd.DataFrame(all_poses)


def main():
    """Main dashboard application."""
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default="data/telemetry.db")
    args, _ = parser.parse_known_args(sys.argv[1:])

    st.set_page_config(
        page_title="USV Tracker Telemetry",
        layout="wide"
    )

    st.title("USV Tracker Telemetry")
    st.markdown("---")

    sessions_df, poses_df = load_data(args.db)

    if poses_df.empty:
        st.info("No telemetry found. Track a video with --db first!")
        st.markdown(f"""
        To get started:
        1. Run: `python src/video_processor.py --video input/your_video.mov --mode threshold --db {args.db}`
        2. Refresh this dashboard
        """)
        return

    st.sidebar.header("Session")

    session_options = [
        f"#{row['session_id']} {row['date']} - {row['source']} ({row['strategy']})"
        for _, row in sessions_df.iterrows()
    ]
    selected = st.sidebar.selectbox("Select Session", session_options)
    session = sessions_df.iloc[session_options.index(selected)]

    session_poses = poses_df[poses_df['session_id'] == session['session_id']]
    found_poses = session_poses[session_poses['found'] == 1]

    fps = session['fps'] if pd.notna(session['fps']) and session['fps'] > 0 else 30.0
    kinematics = TrackKinematics(fps=fps)
    track = list(zip(found_poses['x'], found_poses['y'], found_poses['frame_number']))
    speed = kinematics.calculate_speed(track)

    col1, col2, col3, col4 = st.columns(4)

    with col1:
        st.metric("Frames", len(session_poses))

    with col2:
        if len(session_poses) > 0:
            rate = len(found_poses) / len(session_poses) * 100
            st.metric("Detection Rate", f"{rate:.1f}%")
        else:
            st.metric("Detection Rate", "N/A")

    with col3:
        sizes = found_poses['size'].dropna()
        if not sizes.empty:
            st.metric("Mean Size", f"{sizes.mean():.1f} px")
        else:
            st.metric("Mean Size", "N/A")

    with col4:
        if "speed_pixels_per_second" in speed:
            st.metric("Mean Speed", f"{speed['speed_pixels_per_second']:.1f} px/s")
        else:
            st.metric("Mean Speed", "N/A")

    st.markdown("---")

    tab1, tab2, tab3 = st.tabs(["Track", "Heading & Size", "Frame Details"])

    with tab1:
        st.header("Vehicle Track")
        if not found_poses.empty:
            frame_size = (session['frame_width'], session['frame_height'])
            fig = create_track_figure(found_poses, frame_size)
            st.plotly_chart(fig, use_container_width=True)
        else:
            st.info("The vehicle was not found in this session")

    with tab2:
        st.header("Heading and Size")
        headings = found_poses.dropna(subset=['heading_deg'])

        if not headings.empty:
            col1, col2 = st.columns(2)

            with col1:
                st.subheader("Heading Over Time")
                fig = px.scatter(
                    headings,
                    x='frame_number',
                    y='heading_deg',
                    labels={'frame_number': 'Frame', 'heading_deg': 'Heading (deg)'}
                )
                fig.update_yaxes(range=[0, 180])
                st.plotly_chart(fig, use_container_width=True)

                turn_rate = kinematics.calculate_turn_rate(
                    list(zip(headings['heading_deg'], headings['frame_number']))
                )
                if turn_rate is not None:
                    st.metric("Mean Turn Rate", f"{turn_rate:.2f} deg/s")

            with col2:
                st.subheader("Size Over Time")
                fig = px.line(
                    headings,
                    x='frame_number',
                    y='size',
                    labels={'frame_number': 'Frame', 'size': 'Size (px)'}
                )
                st.plotly_chart(fig, use_container_width=True)
        else:
            st.info("No pose data available")

    with tab3:
        st.header("Frame Details")
        display_df = session_poses[[
            'frame_number', 'found', 'x', 'y', 'heading_deg', 'size', 'area'
        ]].copy()

        st.dataframe(
            display_df,
            column_config={
                'frame_number': 'Frame',
                'found': 'Found',
                'x': st.column_config.NumberColumn('x', format="%.1f"),
                'y': st.column_config.NumberColumn('y', format="%.1f"),
                'heading_deg': st.column_config.NumberColumn('Heading (deg)', format="%.1f"),
                'size': st.column_config.NumberColumn('Size (px)', format="%.1f"),
                'area': st.column_config.NumberColumn('Area (px)', format="%.0f")
            },
            hide_index=True,
            use_container_width=True
        )

    st.markdown("---")
    st.caption("USV Tracker - pose telemetry")


if __name__ == "__main__":
    main()
